import base64
import os
import uuid

import pytest
from dotenv import load_dotenv

from asyncfileshare import LocalStorageEmulator, StorageAccount

load_dotenv()

# Azure config
CONN_STR = os.environ.get("AZURE_STORAGE_CONNECTION_STRING")

# Local config
LOCAL_ACCOUNT = "devaccount"
LOCAL_KEY = base64.b64encode(b"emulator-account-key-for-tests!!").decode()
LOCAL_CONN_STR = (
    "DefaultEndpointsProtocol=https;"
    f"AccountName={LOCAL_ACCOUNT};"
    f"AccountKey={LOCAL_KEY};"
    "EndpointSuffix=core.windows.net"
)


@pytest.fixture
def unique_name():
    """Factory for share/container names that are valid on the service."""

    def make(suffix: str) -> str:
        return f"test-{suffix}-{uuid.uuid4().hex[:8]}"

    return make


@pytest.fixture
def emulator(tmp_path):
    return LocalStorageEmulator(tmp_path / "storage", {LOCAL_ACCOUNT: LOCAL_KEY})


@pytest.fixture
def local_account(emulator):
    return StorageAccount.parse(
        LOCAL_CONN_STR, file_backend=emulator, blob_backend=emulator
    )


def _cleanup_azure(connection_string: str) -> None:
    from azure.storage.blob import BlobServiceClient
    from azure.storage.fileshare import ShareServiceClient

    shares = ShareServiceClient.from_connection_string(connection_string)
    for share in shares.list_shares(name_starts_with="test-"):
        shares.delete_share(share.name)
    blobs = BlobServiceClient.from_connection_string(connection_string)
    for container in blobs.list_containers(name_starts_with="test-"):
        blobs.delete_container(container.name)


# ---------------------------
# Parametrize backends
# ---------------------------
@pytest.fixture(
    params=[
        pytest.param("azure", marks=pytest.mark.azure),
        pytest.param("local", marks=pytest.mark.local),
    ]
)
def account(request, tmp_path):
    """Fixture that provides an account on either Azure or the local emulator."""
    if request.param == "azure":
        if not CONN_STR:
            pytest.skip("Azure backend not configured (AZURE_STORAGE_CONNECTION_STRING missing)")
        yield StorageAccount.parse(CONN_STR)
        _cleanup_azure(CONN_STR)

    elif request.param == "local":
        # tmp_path is auto-cleaned by pytest
        emulator = LocalStorageEmulator(tmp_path / "storage", {LOCAL_ACCOUNT: LOCAL_KEY})
        yield StorageAccount.parse(
            LOCAL_CONN_STR, file_backend=emulator, blob_backend=emulator
        )

