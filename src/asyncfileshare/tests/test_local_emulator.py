import asyncio
import base64
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

from asyncfileshare import (
    AuthorizationFailedError,
    FileHandle,
    InvalidConfigurationError,
    Limit,
    LocalStorageEmulator,
    Permission,
    SharedAccessPolicy,
    StorageAccount,
    TransportError,
)
from asyncfileshare import local_file_adapter

OTHER_KEY = base64.b64encode(b"some-other-key-that-is-not-valid").decode()


def account_for(emulator, name: str, key: str) -> StorageAccount:
    return StorageAccount.parse(
        f"DefaultEndpointsProtocol=https;AccountName={name};AccountKey={key}",
        file_backend=emulator,
        blob_backend=emulator,
    )


@pytest.mark.asyncio
@pytest.mark.local
async def test_unknown_account(emulator):
    share = account_for(emulator, "stranger", OTHER_KEY).file_service().get_share("data")
    with pytest.raises(TransportError):
        await share.exists()


@pytest.mark.asyncio
@pytest.mark.local
async def test_wrong_account_key(emulator, local_account):
    share = account_for(emulator, local_account.name, OTHER_KEY).file_service().get_share("data")
    with pytest.raises(AuthorizationFailedError):
        await share.create_if_not_exists()


@pytest.mark.asyncio
@pytest.mark.local
@pytest.mark.parametrize("name", ["ab", "Upper", "double--hyphen", "-leading", "under_score"])
async def test_invalid_share_names(local_account, name):
    with pytest.raises(InvalidConfigurationError):
        await local_account.file_service().get_share(name).create_if_not_exists()


@pytest.mark.asyncio
@pytest.mark.local
async def test_local_path_traversal_protection(local_account):
    share = local_account.file_service().get_share("traversal")
    await share.create_if_not_exists()

    with pytest.raises(InvalidConfigurationError):
        share.get_root_directory().get_file("../escape.txt")

    # Handles built by hand bypass path validation; the emulator still refuses.
    escaping = FileHandle(share, ("..", "escape.txt"))
    with pytest.raises(InvalidConfigurationError):
        await escaping.upload_text("malicious")


@pytest.mark.asyncio
@pytest.mark.local
@pytest.mark.skipif(sys.platform.startswith("win"), reason="Symlinks need privileges on Windows")
async def test_symlink_outside_protection(local_account, tmp_path):
    share = local_account.file_service().get_share("symlinked")
    await share.create_if_not_exists()

    outside = tmp_path / "outside"
    outside.mkdir()
    share_root = tmp_path / "storage" / local_account.name / "shares" / "symlinked"
    os.symlink(outside, share_root / "link")

    with pytest.raises(InvalidConfigurationError):
        await share.get_file("link/evil.txt").upload_text("malicious")
    assert not (outside / "evil.txt").exists()


@pytest.mark.asyncio
@pytest.mark.local
async def test_concurrent_uploads_do_not_interleave(local_account):
    share = local_account.file_service().get_share("concurrent")
    await share.create_if_not_exists(quota=Limit(1))
    file = share.get_file("data.bin")
    payloads = [bytes([i]) * 65536 for i in range(10)]

    await asyncio.gather(*(file.upload_bytes(payload) for payload in payloads))

    assert await file.download_bytes() in payloads


@pytest.mark.asyncio
@pytest.mark.local
async def test_metadata_persists_across_instances(local_account, tmp_path):
    share = local_account.file_service().get_share("persistent")
    await share.create_if_not_exists(quota=Limit(8))
    expiry = (datetime.now(timezone.utc) + timedelta(days=1)).replace(microsecond=0)
    await share.add_access_policy(
        "readers", SharedAccessPolicy(permissions=Permission.READ, expiry=expiry)
    )

    reopened = LocalStorageEmulator(
        tmp_path / "storage", {local_account.name: local_account.account_key}
    )
    again = account_for(reopened, local_account.name, local_account.account_key)
    share_again = again.file_service().get_share("persistent")

    assert (await share_again.fetch_attributes()).quota == Limit(8)
    assert (await share_again.get_access_policies())["readers"].expiry == expiry


@pytest.mark.asyncio
@pytest.mark.local
async def test_deleted_share_releases_its_lock(local_account, emulator):
    share = local_account.file_service().get_share("ephemeral")
    await share.create_if_not_exists()
    key = str(emulator._share_meta_path(local_account.name, "ephemeral").resolve())
    assert key in local_file_adapter._lock_registry

    await share.delete_if_exists()
    assert key not in local_file_adapter._lock_registry


@pytest.mark.asyncio
@pytest.mark.local
async def test_accounts_are_isolated(tmp_path, local_account):
    second_key = base64.b64encode(b"second-account-key-for-emulation").decode()
    emulator = LocalStorageEmulator(
        tmp_path / "shared",
        {"first": local_account.account_key, "second": second_key},
    )
    first = account_for(emulator, "first", local_account.account_key)
    second = account_for(emulator, "second", second_key)

    await first.file_service().get_share("common").create_if_not_exists()
    assert await second.file_service().get_share("common").exists() is False
