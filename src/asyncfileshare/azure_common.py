from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from azure.core.credentials import AzureNamedKeyCredential
from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)

from .errors import (
    AuthorizationFailedError,
    CopyStateError,
    InvalidConfigurationError,
    NotFoundError,
    QuotaExceededError,
    TransportError,
)
from .models import CopyState, CopyStatus

if TYPE_CHECKING:
    from .connection import StorageAccount


def credential_for(account: "StorageAccount"):
    """A SAS token when the account carries one, otherwise the shared key."""
    if account.sas_token:
        return account.sas_token
    return AzureNamedKeyCredential(account.name, account.account_key)


@contextmanager
def translate_azure_errors(resource: str):
    """Map SDK exceptions raised inside the block onto the package taxonomy."""
    try:
        yield
    except ResourceNotFoundError as e:
        raise NotFoundError(f"{resource} not found") from e
    except ClientAuthenticationError as e:
        raise AuthorizationFailedError(f"Not authorized to access {resource}") from e
    except HttpResponseError as e:
        status = getattr(e, "status_code", None)
        if status == 403:
            raise AuthorizationFailedError(f"Not authorized to access {resource}") from e
        if status == 413:
            raise QuotaExceededError(f"Quota exceeded writing {resource}") from e
        if getattr(e, "error_code", None) == "NoPendingCopyOperation":
            raise CopyStateError(f"No pending copy on {resource}") from e
        if status == 400:
            raise InvalidConfigurationError(
                f"Request for {resource} rejected: {e.reason or e.message}"
            ) from e
        raise TransportError(f"Request for {resource} failed: {e.message}", status) from e
    except AzureError as e:
        # ServiceRequestError, ServiceResponseError and the like
        raise TransportError(f"Request for {resource} failed: {e.message}") from e


def copy_state_from_properties(copy) -> CopyState | None:
    """Build a CopyState from the SDK's `CopyProperties`, if a copy was recorded."""
    if copy is None or not copy.id:
        return None
    return CopyState(
        copy_id=copy.id,
        status=CopyStatus(copy.status),
        source=copy.source,
        progress=copy.progress,
        status_description=copy.status_description,
    )


def copy_state_from_response(response: dict, source_url: str) -> CopyState:
    return CopyState(
        copy_id=response["copy_id"],
        status=CopyStatus(response["copy_status"]),
        source=source_url.split("?", 1)[0],
    )


def as_utc(value) -> datetime | None:
    """Normalise a datetime or ISO-8601 string to aware UTC; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
