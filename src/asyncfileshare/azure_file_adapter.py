import logging
from typing import TYPE_CHECKING, BinaryIO

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.fileshare import AccessPolicy, Metrics, RetentionPolicy
from azure.storage.fileshare.aio import (
    ShareClient,
    ShareDirectoryClient,
    ShareFileClient,
    ShareServiceClient,
)

from .azure_common import (
    as_utc,
    copy_state_from_properties,
    copy_state_from_response,
    credential_for,
    translate_azure_errors,
)
from .models import (
    UNSET,
    CopyState,
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
)
from .storage_protocols import FileServiceBackend

if TYPE_CHECKING:
    from .clients import FileServiceClient
    from .handles import DirectoryHandle, FileHandle, ShareHandle

logger = logging.getLogger(__name__)

# Azure Files has no "no quota" state: an unset quota is the service maximum
# for a standard share, and reading that maximum back means unset.
MAX_SHARE_QUOTA_GIB = 5120


def _quota_to_gib(quota: Quota) -> int:
    if isinstance(quota, Unset):
        return MAX_SHARE_QUOTA_GIB
    return quota.gib


def _quota_from_gib(gib: int | None) -> Quota:
    if not gib or gib >= MAX_SHARE_QUOTA_GIB:
        return UNSET
    return Limit(gib)


def _to_sdk_metrics(config: MetricsConfig) -> Metrics:
    enabled = config.level is not MetricsLevel.NONE
    days = config.retention_days or None
    return Metrics(
        version=config.version,
        enabled=enabled,
        include_apis=(config.level is MetricsLevel.SERVICE_AND_API) if enabled else None,
        retention_policy=RetentionPolicy(enabled=days is not None, days=days),
    )


def _from_sdk_metrics(granularity: MetricsGranularity, metrics: Metrics | None) -> MetricsConfig:
    if metrics is None or not metrics.enabled:
        level = MetricsLevel.NONE
    elif metrics.include_apis:
        level = MetricsLevel.SERVICE_AND_API
    else:
        level = MetricsLevel.SERVICE
    retention = getattr(metrics, "retention_policy", None)
    return MetricsConfig(
        granularity=granularity,
        level=level,
        retention_days=retention.days if retention is not None and retention.enabled else None,
        version=getattr(metrics, "version", None) or "1.0",
    )


class AzureFileBackend(FileServiceBackend):
    """Azure Files backend built on the async file-share SDK."""

    def _share_client(self, share: "ShareHandle") -> ShareClient:
        return ShareClient(
            share.account.file_endpoint,
            share.name,
            credential=credential_for(share.account),
        )

    def _directory_client(self, directory: "DirectoryHandle") -> ShareDirectoryClient:
        return ShareDirectoryClient(
            directory.account.file_endpoint,
            directory.share.name,
            "/".join(directory.path),
            credential=credential_for(directory.account),
        )

    def _file_client(self, file: "FileHandle") -> ShareFileClient:
        return ShareFileClient(
            file.account.file_endpoint,
            file.share.name,
            "/".join(file.path),
            credential=credential_for(file.account),
        )

    async def create_share(self, share: "ShareHandle", quota: Quota | None) -> bool:
        kwargs = {} if quota is None else {"quota": _quota_to_gib(quota)}
        async with self._share_client(share) as client:
            with translate_azure_errors(f"Share '{share.name}'"):
                try:
                    await client.create_share(**kwargs)
                except ResourceExistsError:
                    logger.debug("Share %s already exists", share.name)
                    return False
        logger.info("Created share %s", share.name)
        return True

    async def delete_share(self, share: "ShareHandle") -> bool:
        async with self._share_client(share) as client:
            with translate_azure_errors(f"Share '{share.name}'"):
                try:
                    await client.delete_share()
                except ResourceNotFoundError:
                    return False
        logger.info("Deleted share %s", share.name)
        return True

    async def share_exists(self, share: "ShareHandle") -> bool:
        async with self._share_client(share) as client:
            with translate_azure_errors(f"Share '{share.name}'"):
                try:
                    await client.get_share_properties()
                except ResourceNotFoundError:
                    return False
        return True

    async def get_share_properties(self, share: "ShareHandle") -> SharePropertiesSnapshot:
        async with self._share_client(share) as client:
            with translate_azure_errors(f"Share '{share.name}'"):
                props = await client.get_share_properties()
                usage_bytes = await client.get_share_stats()
        return SharePropertiesSnapshot(
            quota=_quota_from_gib(props.quota),
            usage_gib=ShareStats(usage_bytes).usage_gib,
            etag=props.etag,
            last_modified=props.last_modified,
        )

    async def set_share_properties(
        self, share: "ShareHandle", properties: SharePropertiesSnapshot
    ) -> None:
        async with self._share_client(share) as client:
            with translate_azure_errors(f"Share '{share.name}'"):
                await client.set_share_quota(_quota_to_gib(properties.quota))
        logger.info("Set quota of share %s to %r", share.name, properties.quota)

    async def get_share_stats(self, share: "ShareHandle") -> ShareStats:
        async with self._share_client(share) as client:
            with translate_azure_errors(f"Share '{share.name}'"):
                return ShareStats(await client.get_share_stats())

    async def get_access_policies(self, share: "ShareHandle") -> dict[str, SharedAccessPolicy]:
        async with self._share_client(share) as client:
            with translate_azure_errors(f"Share '{share.name}'"):
                response = await client.get_share_access_policy()
        policies = {}
        for identifier in response.get("signed_identifiers") or []:
            access = identifier.access_policy
            policies[identifier.id] = SharedAccessPolicy(
                permissions=Permission.from_string(access.permission or "") if access else Permission(0),
                expiry=as_utc(access.expiry) if access else None,
                start=as_utc(access.start) if access else None,
            )
        return policies

    async def set_access_policies(
        self, share: "ShareHandle", policies: dict[str, SharedAccessPolicy]
    ) -> None:
        identifiers = {
            name: AccessPolicy(
                permission=policy.permissions.to_string() or None,
                expiry=as_utc(policy.expiry),
                start=as_utc(policy.start),
            )
            for name, policy in policies.items()
        }
        async with self._share_client(share) as client:
            with translate_azure_errors(f"Share '{share.name}'"):
                await client.set_share_access_policy(signed_identifiers=identifiers)
        logger.info("Stored %d access policies on share %s", len(identifiers), share.name)

    async def directory_exists(self, directory: "DirectoryHandle") -> bool:
        if not directory.path:
            return await self.share_exists(directory.share)
        async with self._directory_client(directory) as client:
            with translate_azure_errors(f"Directory '{directory.url}'"):
                return await client.exists()

    async def create_directory(self, directory: "DirectoryHandle") -> bool:
        if not directory.path:
            return False
        async with self._directory_client(directory) as client:
            with translate_azure_errors(f"Directory '{directory.url}'"):
                try:
                    await client.create_directory()
                except ResourceExistsError:
                    return False
        logger.debug("Created directory %s", directory.url)
        return True

    async def list_directory(self, directory: "DirectoryHandle") -> list[DirectoryEntry]:
        entries: list[DirectoryEntry] = []
        async with self._directory_client(directory) as client:
            with translate_azure_errors(f"Directory '{directory.url}'"):
                async for item in client.list_directories_and_files():
                    entries.append(
                        DirectoryEntry(name=item["name"], is_directory=bool(item["is_directory"]))
                    )
        return entries

    async def file_exists(self, file: "FileHandle") -> bool:
        async with self._file_client(file) as client:
            with translate_azure_errors(f"File '{file.url}'"):
                try:
                    return await client.exists()
                except ResourceNotFoundError:
                    # Missing share
                    return False

    async def upload_file(self, file: "FileHandle", data: bytes) -> None:
        async with self._file_client(file) as client:
            with translate_azure_errors(f"File '{file.url}'"):
                await client.upload_file(data)
        logger.debug("Uploaded %d bytes to %s", len(data), file.url)

    async def download_file(self, file: "FileHandle", stream: BinaryIO) -> int:
        async with self._file_client(file) as client:
            with translate_azure_errors(f"File '{file.url}'"):
                downloader = await client.download_file()
                return await downloader.readinto(stream)

    async def delete_file(self, file: "FileHandle") -> None:
        async with self._file_client(file) as client:
            with translate_azure_errors(f"File '{file.url}'"):
                await client.delete_file()
        logger.debug("Deleted %s", file.url)

    async def start_file_copy(self, file: "FileHandle", source_url: str) -> CopyState:
        async with self._file_client(file) as client:
            with translate_azure_errors(f"File '{file.url}'"):
                response = await client.start_copy_from_url(source_url)
        state = copy_state_from_response(response, source_url)
        logger.info("Started copy %s into %s (%s)", state.copy_id, file.url, state.status.value)
        return state

    async def get_file_copy_state(self, file: "FileHandle") -> CopyState | None:
        async with self._file_client(file) as client:
            with translate_azure_errors(f"File '{file.url}'"):
                props = await client.get_file_properties()
        return copy_state_from_properties(props.copy)

    async def abort_file_copy(self, file: "FileHandle", copy_id: str) -> None:
        async with self._file_client(file) as client:
            with translate_azure_errors(f"File '{file.url}'"):
                await client.abort_copy(copy_id)
        logger.info("Aborted copy %s into %s", copy_id, file.url)

    async def get_service_properties(self, service: "FileServiceClient") -> ServiceProperties:
        async with ShareServiceClient(
            service.account.file_endpoint, credential=credential_for(service.account)
        ) as client:
            with translate_azure_errors(f"File service of '{service.account.name}'"):
                props = await client.get_service_properties()
        return ServiceProperties(
            hour_metrics=_from_sdk_metrics(MetricsGranularity.HOUR, props.get("hour_metrics")),
            minute_metrics=_from_sdk_metrics(MetricsGranularity.MINUTE, props.get("minute_metrics")),
        )

    async def set_service_properties(
        self, service: "FileServiceClient", metrics: list[MetricsConfig]
    ) -> None:
        kwargs = {}
        for config in metrics:
            kwargs[f"{config.granularity.value}_metrics"] = _to_sdk_metrics(config)
        async with ShareServiceClient(
            service.account.file_endpoint, credential=credential_for(service.account)
        ) as client:
            with translate_azure_errors(f"File service of '{service.account.name}'"):
                await client.set_service_properties(**kwargs)

    async def close(self) -> None:
        # Clients are opened per request.
        pass
