"""
Locators for shares, directories, files, containers and blobs.

A handle holds only identifying data plus its parent context. Creating one
never contacts the backend; remote state is read by the explicit async
methods, each of which is a single round trip.
"""

import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Awaitable, Callable
from urllib.parse import quote

from . import sas
from .errors import CopyStateError, InvalidConfigurationError
from .models import (
    MAX_ACCESS_POLICIES,
    CopyState,
    CopyStatus,
    DirectoryEntry,
    Quota,
    SharedAccessPolicy,
    SharePropertiesSnapshot,
    ShareStats,
    WriteMode,
)

if TYPE_CHECKING:
    from .clients import BlobServiceClient, FileServiceClient
    from .connection import StorageAccount

logger = logging.getLogger(__name__)


def split_path(path: str) -> tuple[str, ...]:
    segments = tuple(part for part in path.replace("\\", "/").split("/") if part)
    for segment in segments:
        if segment in (".", ".."):
            raise InvalidConfigurationError(f"Relative segment in path '{path}'")
    return segments


def _quote_path(segments: tuple[str, ...]) -> str:
    return "/".join(quote(segment, safe="") for segment in segments)


async def _download_to_local(
    fetch: Callable[[BinaryIO], Awaitable[int]], local_path: str | Path, mode: WriteMode
) -> int:
    if mode is WriteMode.APPEND:
        with open(local_path, mode.value) as stream:
            return await fetch(stream)
    # The local file is only truncated once the whole download has arrived.
    buffer = io.BytesIO()
    size = await fetch(buffer)
    with open(local_path, mode.value) as stream:
        stream.write(buffer.getvalue())
    return size


@dataclass(frozen=True)
class ShareHandle:
    service: "FileServiceClient"
    name: str

    @property
    def account(self) -> "StorageAccount":
        return self.service.account

    @property
    def _backend(self):
        return self.service.account.file_backend

    @property
    def url(self) -> str:
        return f"{self.account.file_endpoint}/{quote(self.name, safe='')}"

    def with_sas(self, sas_token: str) -> "ShareHandle":
        return ShareHandle(self.service.with_sas(sas_token), self.name)

    def generate_sas(
        self, policy: SharedAccessPolicy | None = None, policy_name: str | None = None
    ) -> str:
        return sas.share_sas(self.account, self.name, policy, policy_name)

    def sas_url(
        self, policy: SharedAccessPolicy | None = None, policy_name: str | None = None
    ) -> str:
        return f"{self.url}?{self.generate_sas(policy, policy_name)}"

    def get_root_directory(self) -> "DirectoryHandle":
        return DirectoryHandle(self, ())

    def get_directory(self, path: str) -> "DirectoryHandle":
        return DirectoryHandle(self, split_path(path))

    def get_file(self, path: str) -> "FileHandle":
        segments = split_path(path)
        if not segments:
            raise InvalidConfigurationError("A file path needs at least one segment")
        return FileHandle(self, segments)

    async def create_if_not_exists(self, quota: Quota | None = None) -> bool:
        """
        Create the share in one round trip.

        Returns True if this call created it and False if it already
        existed; concurrent callers racing on the same name never error.
        """
        return await self._backend.create_share(self, quota)

    async def exists(self) -> bool:
        return await self._backend.share_exists(self)

    async def delete_if_exists(self) -> bool:
        return await self._backend.delete_share(self)

    async def get_stats(self) -> ShareStats:
        return await self._backend.get_share_stats(self)

    async def fetch_attributes(self) -> SharePropertiesSnapshot:
        return await self._backend.get_share_properties(self)

    async def set_properties(self, properties: SharePropertiesSnapshot) -> None:
        await self._backend.set_share_properties(self, properties)

    async def get_access_policies(self) -> dict[str, SharedAccessPolicy]:
        return await self._backend.get_access_policies(self)

    async def set_access_policies(self, policies: dict[str, SharedAccessPolicy]) -> None:
        if len(policies) > MAX_ACCESS_POLICIES:
            raise InvalidConfigurationError(
                f"A share holds at most {MAX_ACCESS_POLICIES} stored access policies"
            )
        for name in policies:
            if not name or len(name) > 64:
                raise InvalidConfigurationError(f"Invalid access policy name '{name}'")
        await self._backend.set_access_policies(self, dict(policies))

    async def add_access_policy(self, name: str, policy: SharedAccessPolicy) -> None:
        policies = await self.get_access_policies()
        policies[name] = policy
        await self.set_access_policies(policies)

    async def revoke_access_policy(self, name: str) -> bool:
        """
        Remove a stored policy; every token naming it stops working.

        Tokens already accepted for a request in flight are not interrupted.
        """
        policies = await self.get_access_policies()
        if name not in policies:
            return False
        del policies[name]
        await self.set_access_policies(policies)
        logger.info("Revoked access policy %s on share %s", name, self.name)
        return True


@dataclass(frozen=True)
class DirectoryHandle:
    share: ShareHandle
    path: tuple[str, ...] = ()

    @property
    def account(self) -> "StorageAccount":
        return self.share.account

    @property
    def name(self) -> str:
        return self.path[-1] if self.path else ""

    @property
    def url(self) -> str:
        if not self.path:
            return self.share.url
        return f"{self.share.url}/{_quote_path(self.path)}"

    def with_sas(self, sas_token: str) -> "DirectoryHandle":
        return DirectoryHandle(self.share.with_sas(sas_token), self.path)

    def sas_url(
        self, policy: SharedAccessPolicy | None = None, policy_name: str | None = None
    ) -> str:
        # Directories cannot be signed on their own; the token is share-scoped.
        return f"{self.url}?{self.share.generate_sas(policy, policy_name)}"

    def get_subdirectory(self, name: str) -> "DirectoryHandle":
        return DirectoryHandle(self.share, self.path + split_path(name))

    def get_file(self, name: str) -> "FileHandle":
        segments = split_path(name)
        if not segments:
            raise InvalidConfigurationError("A file name cannot be empty")
        return FileHandle(self.share, self.path + segments)

    async def exists(self) -> bool:
        return await self.share._backend.directory_exists(self)

    async def create_if_not_exists(self) -> bool:
        return await self.share._backend.create_directory(self)

    async def list_entries(self) -> list[DirectoryEntry]:
        return await self.share._backend.list_directory(self)


@dataclass(frozen=True)
class FileHandle:
    share: ShareHandle
    path: tuple[str, ...]

    @property
    def account(self) -> "StorageAccount":
        return self.share.account

    @property
    def name(self) -> str:
        return self.path[-1]

    @property
    def parent(self) -> DirectoryHandle:
        return DirectoryHandle(self.share, self.path[:-1])

    @property
    def url(self) -> str:
        return f"{self.share.url}/{_quote_path(self.path)}"

    def with_sas(self, sas_token: str) -> "FileHandle":
        return FileHandle(self.share.with_sas(sas_token), self.path)

    def generate_sas(
        self, policy: SharedAccessPolicy | None = None, policy_name: str | None = None
    ) -> str:
        return sas.file_sas(self.account, self.share.name, self.path, policy, policy_name)

    def sas_url(
        self, policy: SharedAccessPolicy | None = None, policy_name: str | None = None
    ) -> str:
        return f"{self.url}?{self.generate_sas(policy, policy_name)}"

    async def exists(self) -> bool:
        return await self.share._backend.file_exists(self)

    async def upload_bytes(self, data: bytes) -> None:
        await self.share._backend.upload_file(self, bytes(data))

    async def upload_text(self, content: str, encoding: str = "utf-8") -> None:
        await self.upload_bytes(content.encode(encoding))

    async def download_to_local(
        self, local_path: str | Path, mode: WriteMode = WriteMode.OVERWRITE
    ) -> int:
        return await _download_to_local(
            lambda stream: self.share._backend.download_file(self, stream),
            local_path,
            mode,
        )

    async def download_bytes(self) -> bytes:
        buffer = io.BytesIO()
        await self.share._backend.download_file(self, buffer)
        return buffer.getvalue()

    async def download_text(self, encoding: str = "utf-8") -> str:
        return (await self.download_bytes()).decode(encoding)

    async def delete(self) -> None:
        await self.share._backend.delete_file(self)

    async def start_copy(self, source: "FileHandle | BlobHandle | str") -> CopyState:
        source_url = copy_source_url(source, self)
        return await self.share._backend.start_file_copy(self, source_url)

    async def get_copy_state(self) -> CopyState | None:
        return await self.share._backend.get_file_copy_state(self)

    async def abort_copy(self, copy_id: str) -> None:
        await self.share._backend.abort_file_copy(self, copy_id)


@dataclass(frozen=True)
class ContainerHandle:
    service: "BlobServiceClient"
    name: str

    @property
    def account(self) -> "StorageAccount":
        return self.service.account

    @property
    def _backend(self):
        return self.service.account.blob_backend

    @property
    def url(self) -> str:
        return f"{self.account.blob_endpoint}/{quote(self.name, safe='')}"

    def with_sas(self, sas_token: str) -> "ContainerHandle":
        return ContainerHandle(self.service.with_sas(sas_token), self.name)

    def generate_sas(self, policy: SharedAccessPolicy) -> str:
        return sas.container_sas(self.account, self.name, policy)

    def sas_url(self, policy: SharedAccessPolicy) -> str:
        return f"{self.url}?{self.generate_sas(policy)}"

    def get_blob(self, name: str) -> "BlobHandle":
        if not name or name.endswith("/"):
            raise InvalidConfigurationError(f"Invalid blob name '{name}'")
        return BlobHandle(self, name)

    async def create_if_not_exists(self) -> bool:
        return await self._backend.create_container(self)

    async def exists(self) -> bool:
        return await self._backend.container_exists(self)


@dataclass(frozen=True)
class BlobHandle:
    container: ContainerHandle
    name: str

    @property
    def account(self) -> "StorageAccount":
        return self.container.account

    @property
    def url(self) -> str:
        return f"{self.container.url}/{quote(self.name, safe='/')}"

    def with_sas(self, sas_token: str) -> "BlobHandle":
        return BlobHandle(self.container.with_sas(sas_token), self.name)

    def generate_sas(self, policy: SharedAccessPolicy) -> str:
        return sas.blob_sas(self.account, self.container.name, self.name, policy)

    def sas_url(self, policy: SharedAccessPolicy) -> str:
        return f"{self.url}?{self.generate_sas(policy)}"

    async def exists(self) -> bool:
        return await self.container._backend.blob_exists(self)

    async def upload_bytes(self, data: bytes) -> None:
        await self.container._backend.upload_blob(self, bytes(data))

    async def upload_text(self, content: str, encoding: str = "utf-8") -> None:
        await self.upload_bytes(content.encode(encoding))

    async def download_to_local(
        self, local_path: str | Path, mode: WriteMode = WriteMode.OVERWRITE
    ) -> int:
        return await _download_to_local(
            lambda stream: self.container._backend.download_blob(self, stream),
            local_path,
            mode,
        )

    async def download_bytes(self) -> bytes:
        buffer = io.BytesIO()
        await self.container._backend.download_blob(self, buffer)
        return buffer.getvalue()

    async def download_text(self, encoding: str = "utf-8") -> str:
        return (await self.download_bytes()).decode(encoding)

    async def start_copy(self, source: "FileHandle | BlobHandle | str") -> CopyState:
        source_url = copy_source_url(source, self)
        return await self.container._backend.start_blob_copy(self, source_url)

    async def get_copy_state(self) -> CopyState | None:
        return await self.container._backend.get_blob_copy_state(self)

    async def abort_copy(self, copy_id: str) -> None:
        await self.container._backend.abort_blob_copy(self, copy_id)


def copy_source_url(
    source: FileHandle | BlobHandle | str, destination: FileHandle | BlobHandle
) -> str:
    """
    Resolve the URL the backend should copy from.

    Only a same-account file to file copy made with the account key may name
    its source bare; the service authorizes it with the destination's key.
    Everything else (file/blob crossings, other accounts) needs a source
    handle authenticated by a SAS token.
    """
    if isinstance(source, str):
        return source
    if source.account.sas_token:
        return f"{source.url}?{source.account.sas_token}"
    if (
        isinstance(source, FileHandle)
        and isinstance(destination, FileHandle)
        and source.account.name == destination.account.name
        and source.account.account_key
        and destination.account.account_key
    ):
        return source.url
    raise InvalidConfigurationError(
        f"Copying from {source.url} to {destination.url} needs a SAS-authenticated "
        "source; pass source.with_sas(token)"
    )


async def wait_for_copy(
    handle: FileHandle | BlobHandle,
    poll_interval: float = 1.0,
    timeout: float | None = None,
) -> CopyState:
    """Poll a copy destination until its copy leaves the pending state."""
    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout
    while True:
        state = await handle.get_copy_state()
        if state is None:
            raise CopyStateError(f"No copy operation recorded on {handle.url}")
        if state.status is not CopyStatus.PENDING:
            return state
        if deadline is not None and loop.time() >= deadline:
            raise TimeoutError(f"Copy {state.copy_id} still pending after {timeout}s")
        await asyncio.sleep(poll_interval)

