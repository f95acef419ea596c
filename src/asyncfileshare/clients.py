import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import InvalidConfigurationError
from .handles import ContainerHandle, ShareHandle
from .models import MetricsConfig, ServiceProperties

if TYPE_CHECKING:
    from .connection import StorageAccount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileServiceClient:
    """Entry point for file-share operations on one account."""

    account: "StorageAccount"

    def get_share(self, name: str) -> ShareHandle:
        return ShareHandle(self, name)

    def with_sas(self, sas_token: str) -> "FileServiceClient":
        return FileServiceClient(self.account.with_sas(sas_token))

    async def get_service_properties(self) -> ServiceProperties:
        return await self.account.file_backend.get_service_properties(self)

    async def set_service_properties(self, *metrics: MetricsConfig) -> None:
        """
        Push hour and/or minute metrics settings in one round trip.

        Validation happens before anything is sent: retention must be within
        0..365 days and each granularity may appear once.
        """
        seen = set()
        for config in metrics:
            config.validate()
            if config.granularity in seen:
                raise InvalidConfigurationError(
                    f"Duplicate {config.granularity.value} metrics configuration"
                )
            seen.add(config.granularity)
        if not metrics:
            return
        await self.account.file_backend.set_service_properties(self, list(metrics))
        logger.info(
            "Updated %s metrics on account %s",
            ", ".join(sorted(g.value for g in seen)),
            self.account.name,
        )


@dataclass(frozen=True)
class BlobServiceClient:
    """Entry point for blob-container operations on one account."""

    account: "StorageAccount"

    def get_container(self, name: str) -> ContainerHandle:
        return ContainerHandle(self, name)

    def with_sas(self, sas_token: str) -> "BlobServiceClient":
        return BlobServiceClient(self.account.with_sas(sas_token))
