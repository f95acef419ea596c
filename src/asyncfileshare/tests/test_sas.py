from datetime import datetime, timedelta, timezone

import pytest
from azure.storage.fileshare import generate_file_sas

from asyncfileshare import (
    AuthorizationFailedError,
    InvalidConfigurationError,
    Permission,
    SharedAccessPolicy,
)


def in_hours(hours: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


def read_policy(hours: float = 24) -> SharedAccessPolicy:
    return SharedAccessPolicy(permissions=Permission.READ, expiry=in_hours(hours))


async def make_share_with_file(account, name: str, path: str = "CustomLogs/log1.txt"):
    share = account.file_service().get_share(name)
    await share.create_if_not_exists()
    file = share.get_file(path)
    if len(file.path) > 1:
        await file.parent.create_if_not_exists()
    await file.upload_text("log line")
    return share, file


# ---------------------------
# Ad hoc tokens
# ---------------------------
@pytest.mark.asyncio
async def test_read_only_token_reads_but_cannot_write(account, unique_name):
    _, file = await make_share_with_file(account, unique_name("sas"))
    reader = file.with_sas(file.generate_sas(read_policy()))

    assert await reader.exists() is True
    assert await reader.download_text() == "log line"
    with pytest.raises(AuthorizationFailedError):
        await reader.upload_text("tampered")
    with pytest.raises(AuthorizationFailedError):
        await reader.delete()
    assert await file.download_text() == "log line"


@pytest.mark.asyncio
async def test_file_token_does_not_open_other_files(account, unique_name):
    share, file = await make_share_with_file(account, unique_name("scope"), "a.txt")
    await share.get_file("b.txt").upload_text("secret")

    token = file.generate_sas(read_policy())
    other = share.with_sas(token).get_file("b.txt")
    with pytest.raises(AuthorizationFailedError):
        await other.download_text()


@pytest.mark.asyncio
async def test_share_token_with_list_permission(account, unique_name):
    share, file = await make_share_with_file(account, unique_name("list"))
    token = share.generate_sas(
        SharedAccessPolicy(permissions=Permission.READ | Permission.LIST, expiry=in_hours(1))
    )
    directory = share.with_sas(token).get_directory("CustomLogs")
    names = [entry.name for entry in await directory.list_entries()]
    assert names == ["log1.txt"]
    assert await share.with_sas(token).get_file("CustomLogs/log1.txt").download_text() == "log line"


def test_sas_url_carries_token(local_account):
    share = local_account.file_service().get_share("url")
    file = share.get_file("CustomLogs/log1.txt")
    url = file.sas_url(read_policy())
    base, _, query = url.partition("?")
    assert base == file.url
    assert "sp=r" in query
    assert "sig=" in query

    directory_url = file.parent.sas_url(read_policy())
    assert directory_url.startswith(file.parent.url + "?")
    assert "sr=s" in directory_url


@pytest.mark.asyncio
@pytest.mark.local
async def test_expired_token_is_rejected(local_account, emulator):
    _, file = await make_share_with_file(local_account, "expiry")
    reader = file.with_sas(file.generate_sas(read_policy(hours=24)))
    assert await reader.download_text() == "log line"

    later = datetime.now(timezone.utc) + timedelta(hours=25)
    emulator.clock = lambda: later
    with pytest.raises(AuthorizationFailedError):
        await reader.download_text()


@pytest.mark.asyncio
@pytest.mark.local
async def test_token_not_valid_before_start(local_account):
    _, file = await make_share_with_file(local_account, "not-yet")
    policy = SharedAccessPolicy(
        permissions=Permission.READ, start=in_hours(1), expiry=in_hours(2)
    )
    with pytest.raises(AuthorizationFailedError):
        await file.with_sas(file.generate_sas(policy)).download_text()


@pytest.mark.asyncio
@pytest.mark.local
async def test_tampered_token_is_rejected(local_account):
    _, file = await make_share_with_file(local_account, "tamper")
    token = file.generate_sas(read_policy())
    forged = token.replace("sp=r", "sp=rcwd")
    with pytest.raises(AuthorizationFailedError):
        await file.with_sas(forged).upload_text("forged")


@pytest.mark.asyncio
@pytest.mark.local
async def test_management_operations_need_the_key(local_account):
    share, _ = await make_share_with_file(local_account, "managed")
    token = share.generate_sas(
        SharedAccessPolicy(permissions=Permission.READ | Permission.LIST, expiry=in_hours(1))
    )
    delegated = share.with_sas(token)
    with pytest.raises(AuthorizationFailedError):
        await delegated.fetch_attributes()
    with pytest.raises(AuthorizationFailedError):
        await delegated.delete_if_exists()
    assert await share.exists() is True


# ---------------------------
# Stored access policies
# ---------------------------
@pytest.mark.asyncio
@pytest.mark.local
async def test_stored_policy_round_trip(local_account):
    share, _ = await make_share_with_file(local_account, "policies")
    expiry = in_hours(24).replace(microsecond=0)
    await share.add_access_policy(
        "readers", SharedAccessPolicy(permissions=Permission.READ, expiry=expiry)
    )
    policies = await share.get_access_policies()
    assert policies == {
        "readers": SharedAccessPolicy(permissions=Permission.READ, expiry=expiry)
    }


@pytest.mark.asyncio
@pytest.mark.local
async def test_revoked_policy_stops_named_tokens_only(local_account):
    share, file = await make_share_with_file(local_account, "revoke")
    await share.add_access_policy(
        "readers", SharedAccessPolicy(permissions=Permission.READ, expiry=in_hours(24))
    )

    named = file.with_sas(file.generate_sas(policy_name="readers"))
    ad_hoc = file.with_sas(file.generate_sas(read_policy()))
    assert await named.download_text() == "log line"

    assert await share.revoke_access_policy("readers") is True
    assert await share.revoke_access_policy("readers") is False

    with pytest.raises(AuthorizationFailedError):
        await named.download_text()
    assert await ad_hoc.download_text() == "log line"


@pytest.mark.asyncio
@pytest.mark.local
async def test_token_may_not_repeat_policy_fields(local_account):
    share, file = await make_share_with_file(local_account, "repeated")
    await share.add_access_policy(
        "readers", SharedAccessPolicy(permissions=Permission.READ, expiry=in_hours(24))
    )
    token = file.generate_sas(
        SharedAccessPolicy(permissions=Permission.READ), policy_name="readers"
    )
    with pytest.raises(AuthorizationFailedError):
        await file.with_sas(token).download_text()


@pytest.mark.asyncio
@pytest.mark.local
async def test_token_completes_partial_policy(local_account):
    share, file = await make_share_with_file(local_account, "partial")
    await share.add_access_policy("window", SharedAccessPolicy(expiry=in_hours(24)))
    token = file.generate_sas(
        SharedAccessPolicy(permissions=Permission.READ), policy_name="window"
    )
    assert await file.with_sas(token).download_text() == "log line"


@pytest.mark.asyncio
@pytest.mark.local
async def test_named_policy_must_exist(local_account):
    _, file = await make_share_with_file(local_account, "unknown-policy")
    with pytest.raises(AuthorizationFailedError):
        await file.with_sas(file.generate_sas(policy_name="nobody")).download_text()


@pytest.mark.asyncio
@pytest.mark.local
async def test_at_most_five_stored_policies(local_account):
    share, _ = await make_share_with_file(local_account, "crowded")
    policies = {f"p{i}": read_policy() for i in range(6)}
    with pytest.raises(InvalidConfigurationError):
        await share.set_access_policies(policies)

    for name in list(policies)[:5]:
        await share.add_access_policy(name, policies[name])
    with pytest.raises(InvalidConfigurationError):
        await share.add_access_policy("p5", policies["p5"])
    assert len(await share.get_access_policies()) == 5


# ---------------------------
# Local validation
# ---------------------------
def test_token_matches_sdk_signature(local_account):
    file = local_account.file_service().get_share("logs").get_file("CustomLogs/log1.txt")
    expiry = in_hours(24)
    expected = generate_file_sas(
        account_name=local_account.name,
        share_name="logs",
        file_path=["CustomLogs", "log1.txt"],
        account_key=local_account.account_key,
        permission="r",
        expiry=expiry,
    )
    policy = SharedAccessPolicy(permissions=Permission.READ, expiry=expiry)
    assert file.generate_sas(policy) == expected


def test_file_token_cannot_grant_list(local_account):
    file = local_account.file_service().get_share("logs").get_file("log1.txt")
    policy = SharedAccessPolicy(permissions=Permission.READ | Permission.LIST, expiry=in_hours(1))
    with pytest.raises(InvalidConfigurationError):
        file.generate_sas(policy)


@pytest.mark.parametrize(
    "policy",
    [
        SharedAccessPolicy(permissions=Permission.READ),
        SharedAccessPolicy(expiry=datetime(2030, 1, 1, tzinfo=timezone.utc)),
    ],
)
def test_ad_hoc_token_needs_permissions_and_expiry(local_account, policy):
    share = local_account.file_service().get_share("logs")
    with pytest.raises(InvalidConfigurationError):
        share.generate_sas(policy)


def test_token_needs_a_policy(local_account):
    share = local_account.file_service().get_share("logs")
    with pytest.raises(InvalidConfigurationError):
        share.generate_sas()


def test_permission_strings():
    assert Permission.from_string("lrw") == Permission.READ | Permission.WRITE | Permission.LIST
    assert (Permission.LIST | Permission.READ | Permission.DELETE).to_string() == "rdl"
    assert Permission(0).to_string() == ""
    with pytest.raises(InvalidConfigurationError):
        Permission.from_string("rx")
