import logging
import mimetypes
from typing import TYPE_CHECKING, BinaryIO

from azure.core.exceptions import ResourceExistsError
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobClient, ContainerClient

from .azure_common import (
    copy_state_from_properties,
    copy_state_from_response,
    credential_for,
    translate_azure_errors,
)
from .models import CopyState
from .storage_protocols import BlobServiceBackend

if TYPE_CHECKING:
    from .handles import BlobHandle, ContainerHandle

logger = logging.getLogger(__name__)


class AzureBlobBackend(BlobServiceBackend):
    """Azure Blob Storage backend built on the async blob SDK."""

    def _container_client(self, container: "ContainerHandle") -> ContainerClient:
        return ContainerClient(
            container.account.blob_endpoint,
            container.name,
            credential=credential_for(container.account),
        )

    def _blob_client(self, blob: "BlobHandle") -> BlobClient:
        return BlobClient(
            blob.account.blob_endpoint,
            blob.container.name,
            blob.name,
            credential=credential_for(blob.account),
        )

    async def create_container(self, container: "ContainerHandle") -> bool:
        async with self._container_client(container) as client:
            with translate_azure_errors(f"Container '{container.name}'"):
                try:
                    await client.create_container()
                except ResourceExistsError:
                    return False
        logger.info("Created container %s", container.name)
        return True

    async def container_exists(self, container: "ContainerHandle") -> bool:
        async with self._container_client(container) as client:
            with translate_azure_errors(f"Container '{container.name}'"):
                return await client.exists()

    async def blob_exists(self, blob: "BlobHandle") -> bool:
        async with self._blob_client(blob) as client:
            with translate_azure_errors(f"Blob '{blob.url}'"):
                return await client.exists()

    async def upload_blob(self, blob: "BlobHandle", data: bytes) -> None:
        """Note: Guesses content type from the blob name."""
        guessed, _ = mimetypes.guess_type(blob.name)
        content_settings = ContentSettings(content_type=guessed or "application/octet-stream")
        async with self._blob_client(blob) as client:
            with translate_azure_errors(f"Blob '{blob.url}'"):
                await client.upload_blob(data, overwrite=True, content_settings=content_settings)
        logger.debug("Uploaded %d bytes to %s", len(data), blob.url)

    async def download_blob(self, blob: "BlobHandle", stream: BinaryIO) -> int:
        async with self._blob_client(blob) as client:
            with translate_azure_errors(f"Blob '{blob.url}'"):
                downloader = await client.download_blob()
                return await downloader.readinto(stream)

    async def start_blob_copy(self, blob: "BlobHandle", source_url: str) -> CopyState:
        async with self._blob_client(blob) as client:
            with translate_azure_errors(f"Blob '{blob.url}'"):
                response = await client.start_copy_from_url(source_url)
        state = copy_state_from_response(response, source_url)
        logger.info("Started copy %s into %s (%s)", state.copy_id, blob.url, state.status.value)
        return state

    async def get_blob_copy_state(self, blob: "BlobHandle") -> CopyState | None:
        async with self._blob_client(blob) as client:
            with translate_azure_errors(f"Blob '{blob.url}'"):
                props = await client.get_blob_properties()
        return copy_state_from_properties(props.copy)

    async def abort_blob_copy(self, blob: "BlobHandle", copy_id: str) -> None:
        async with self._blob_client(blob) as client:
            with translate_azure_errors(f"Blob '{blob.url}'"):
                await client.abort_copy(copy_id)
        logger.info("Aborted copy %s into %s", copy_id, blob.url)

    async def close(self) -> None:
        # Clients are opened per request.
        pass
