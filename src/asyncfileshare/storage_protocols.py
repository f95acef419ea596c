from typing import TYPE_CHECKING, BinaryIO, Protocol

from .models import (
    CopyState,
    DirectoryEntry,
    MetricsConfig,
    Quota,
    ServiceProperties,
    SharedAccessPolicy,
    SharePropertiesSnapshot,
    ShareStats,
)

if TYPE_CHECKING:
    from .clients import FileServiceClient
    from .handles import (
        BlobHandle,
        ContainerHandle,
        DirectoryHandle,
        FileHandle,
        ShareHandle,
    )


class FileServiceBackend(Protocol):
    """
    Protocol for a file-share service backend.

    Every method is one round trip. Handles carry the account (endpoint and
    credential) the request is made with.
    """

    async def create_share(self, share: "ShareHandle", quota: Quota | None) -> bool:
        """Create the share; return False if it already existed."""
        ...

    async def delete_share(self, share: "ShareHandle") -> bool:
        """Delete the share; return False if it did not exist."""
        ...

    async def share_exists(self, share: "ShareHandle") -> bool: ...

    async def get_share_properties(
        self, share: "ShareHandle"
    ) -> SharePropertiesSnapshot: ...

    async def set_share_properties(
        self, share: "ShareHandle", properties: SharePropertiesSnapshot
    ) -> None: ...

    async def get_share_stats(self, share: "ShareHandle") -> ShareStats: ...

    async def get_access_policies(
        self, share: "ShareHandle"
    ) -> dict[str, SharedAccessPolicy]: ...

    async def set_access_policies(
        self, share: "ShareHandle", policies: dict[str, SharedAccessPolicy]
    ) -> None:
        """Replace the share's whole set of stored access policies."""
        ...

    async def directory_exists(self, directory: "DirectoryHandle") -> bool: ...

    async def create_directory(self, directory: "DirectoryHandle") -> bool: ...

    async def list_directory(
        self, directory: "DirectoryHandle"
    ) -> list[DirectoryEntry]: ...

    async def file_exists(self, file: "FileHandle") -> bool: ...

    async def upload_file(self, file: "FileHandle", data: bytes) -> None:
        """Write the whole file, replacing any existing content."""
        ...

    async def download_file(self, file: "FileHandle", stream: BinaryIO) -> int:
        """Write the file's content to `stream`; return the byte count."""
        ...

    async def delete_file(self, file: "FileHandle") -> None: ...

    async def start_file_copy(self, file: "FileHandle", source_url: str) -> CopyState: ...

    async def get_file_copy_state(self, file: "FileHandle") -> CopyState | None: ...

    async def abort_file_copy(self, file: "FileHandle", copy_id: str) -> None: ...

    async def get_service_properties(
        self, service: "FileServiceClient"
    ) -> ServiceProperties: ...

    async def set_service_properties(
        self, service: "FileServiceClient", metrics: list[MetricsConfig]
    ) -> None:
        """Push the given metrics; granularities not listed stay unchanged."""
        ...

    async def close(self) -> None:
        """Close any resources/connections."""
        ...


class BlobServiceBackend(Protocol):
    """Protocol for a blob service backend."""

    async def create_container(self, container: "ContainerHandle") -> bool: ...

    async def container_exists(self, container: "ContainerHandle") -> bool: ...

    async def blob_exists(self, blob: "BlobHandle") -> bool: ...

    async def upload_blob(self, blob: "BlobHandle", data: bytes) -> None: ...

    async def download_blob(self, blob: "BlobHandle", stream: BinaryIO) -> int: ...

    async def start_blob_copy(self, blob: "BlobHandle", source_url: str) -> CopyState: ...

    async def get_blob_copy_state(self, blob: "BlobHandle") -> CopyState | None: ...

    async def abort_blob_copy(self, blob: "BlobHandle", copy_id: str) -> None: ...

    async def close(self) -> None:
        """Close any resources/connections."""
        ...
