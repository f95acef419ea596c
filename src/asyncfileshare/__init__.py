"""
asyncfileshare
==============

Async thin client for cloud file shares and blob containers, backed by
Azure Storage or by a local on-disk emulator.

Main entry points:
- ConnectionConfig, StorageAccount: parsed credentials and account context
- FileServiceClient, BlobServiceClient: per-service entry points
- ShareHandle, DirectoryHandle, FileHandle, ContainerHandle, BlobHandle: locators
- SharedAccessPolicy, Permission: SAS grants
- MetricsConfig: service telemetry settings
- AzureFileBackend, AzureBlobBackend, LocalStorageEmulator: backends

Example:
    from asyncfileshare import StorageAccount, SharedAccessPolicy, Permission

    async with StorageAccount.parse(connection_string) as account:
        share = account.file_service().get_share("logs")
        await share.create_if_not_exists()
        log = share.get_root_directory().get_subdirectory("CustomLogs").get_file("log1.txt")
        if await log.exists():
            print(await log.download_text())
"""

from .azure_blob_adapter import AzureBlobBackend
from .azure_file_adapter import AzureFileBackend
from .clients import BlobServiceClient, FileServiceClient
from .connection import ConnectionConfig, StorageAccount
from .errors import (
    AuthorizationFailedError,
    CopyStateError,
    InvalidConfigurationError,
    InvalidConnectionStringError,
    NotFoundError,
    QuotaExceededError,
    StorageError,
    TransportError,
)
from .handles import (
    BlobHandle,
    ContainerHandle,
    DirectoryHandle,
    FileHandle,
    ShareHandle,
    wait_for_copy,
)
from .local_file_adapter import LocalStorageEmulator
from .models import (
    UNSET,
    CopyState,
    CopyStatus,
    DirectoryEntry,
    Limit,
    MetricsConfig,
    MetricsGranularity,
    MetricsLevel,
    Permission,
    Quota,
    ServiceProperties,
    SharedAccessPolicy,
    SharePropertiesSnapshot,
    ShareStats,
    Unset,
    WriteMode,
)
from .storage_protocols import BlobServiceBackend, FileServiceBackend

import importlib.metadata

try:
    __version__ = importlib.metadata.version(__name__)
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "ConnectionConfig",
    "StorageAccount",
    "FileServiceClient",
    "BlobServiceClient",
    "ShareHandle",
    "DirectoryHandle",
    "FileHandle",
    "ContainerHandle",
    "BlobHandle",
    "wait_for_copy",
    "SharedAccessPolicy",
    "Permission",
    "Quota",
    "Unset",
    "UNSET",
    "Limit",
    "SharePropertiesSnapshot",
    "ShareStats",
    "DirectoryEntry",
    "CopyState",
    "CopyStatus",
    "WriteMode",
    "MetricsConfig",
    "MetricsGranularity",
    "MetricsLevel",
    "ServiceProperties",
    "FileServiceBackend",
    "BlobServiceBackend",
    "AzureFileBackend",
    "AzureBlobBackend",
    "LocalStorageEmulator",
    "StorageError",
    "InvalidConnectionStringError",
    "InvalidConfigurationError",
    "NotFoundError",
    "AuthorizationFailedError",
    "QuotaExceededError",
    "CopyStateError",
    "TransportError",
]
