"""
Shared access signature minting.

Signing is local: the SDK's `generate_*_sas` helpers compute the HMAC over the
canonical string-to-sign with the account key, so tokens match what the
service expects. Only registering a *named* policy needs a round trip.
"""

from azure.storage.blob import generate_blob_sas, generate_container_sas
from azure.storage.fileshare import generate_file_sas, generate_share_sas

from .azure_common import as_utc
from .errors import InvalidConfigurationError
from .models import Permission, SharedAccessPolicy

# File and blob tokens cannot grant list.
OBJECT_PERMISSIONS = Permission.READ | Permission.CREATE | Permission.WRITE | Permission.DELETE


def _sas_arguments(
    policy: SharedAccessPolicy | None,
    policy_name: str | None,
    allowed: Permission | None = None,
) -> dict:
    if policy is None and policy_name is None:
        raise InvalidConfigurationError("A SAS needs an ad hoc policy or a stored policy name")

    kwargs: dict = {"policy_id": policy_name}
    if policy is not None:
        if allowed is not None and policy.permissions & ~allowed:
            raise InvalidConfigurationError(
                f"Permissions '{(policy.permissions & ~allowed).to_string()}' "
                "are not valid for this resource"
            )
        if policy_name is None:
            # Ad hoc tokens carry everything themselves.
            if not policy.permissions:
                raise InvalidConfigurationError("An ad hoc SAS needs at least one permission")
            if policy.expiry is None:
                raise InvalidConfigurationError("An ad hoc SAS needs an expiry")
        kwargs["permission"] = policy.permissions.to_string() or None
        kwargs["expiry"] = as_utc(policy.expiry)
        kwargs["start"] = as_utc(policy.start)
    return kwargs


def _require_key(account) -> str:
    if not account.account_key:
        raise InvalidConfigurationError(
            f"Minting a SAS for account '{account.name}' requires its account key"
        )
    return account.account_key


def share_sas(
    account,
    share_name: str,
    policy: SharedAccessPolicy | None = None,
    policy_name: str | None = None,
) -> str:
    return generate_share_sas(
        account_name=account.name,
        share_name=share_name,
        account_key=_require_key(account),
        **_sas_arguments(policy, policy_name),
    )


def file_sas(
    account,
    share_name: str,
    path: tuple[str, ...],
    policy: SharedAccessPolicy | None = None,
    policy_name: str | None = None,
) -> str:
    return generate_file_sas(
        account_name=account.name,
        share_name=share_name,
        file_path=list(path),
        account_key=_require_key(account),
        **_sas_arguments(policy, policy_name, OBJECT_PERMISSIONS),
    )


def container_sas(account, container_name: str, policy: SharedAccessPolicy) -> str:
    """Ad hoc only: containers carry no stored access policies here."""
    return generate_container_sas(
        account_name=account.name,
        container_name=container_name,
        account_key=_require_key(account),
        **_sas_arguments(policy, None),
    )


def blob_sas(
    account,
    container_name: str,
    blob_name: str,
    policy: SharedAccessPolicy,
) -> str:
    return generate_blob_sas(
        account_name=account.name,
        container_name=container_name,
        blob_name=blob_name,
        account_key=_require_key(account),
        **_sas_arguments(policy, None, OBJECT_PERMISSIONS),
    )
