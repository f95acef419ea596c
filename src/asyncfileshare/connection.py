"""
Connection strings and the account context derived from them.

Parsing happens entirely locally: a malformed connection string fails with
InvalidConnectionStringError before anything touches the network.
"""

import base64
import binascii
import dataclasses
import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .azure_blob_adapter import AzureBlobBackend
from .azure_file_adapter import AzureFileBackend
from .clients import BlobServiceClient, FileServiceClient
from .errors import InvalidConnectionStringError
from .storage_protocols import BlobServiceBackend, FileServiceBackend

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT_SUFFIX = "core.windows.net"
DEFAULT_CONNECTION_STRING_VARIABLE = "AZURE_STORAGE_CONNECTION_STRING"

_PROTOCOLS = ("http", "https")

# Lower-cased key -> canonical spelling used when re-serializing.
_KNOWN_KEYS = {
    "defaultendpointsprotocol": "DefaultEndpointsProtocol",
    "accountname": "AccountName",
    "accountkey": "AccountKey",
    "sharedaccesssignature": "SharedAccessSignature",
    "endpointsuffix": "EndpointSuffix",
    "fileendpoint": "FileEndpoint",
    "blobendpoint": "BlobEndpoint",
    "queueendpoint": "QueueEndpoint",
    "tableendpoint": "TableEndpoint",
}


@dataclass(frozen=True)
class ConnectionConfig:
    account_name: str
    account_key: str | None = field(default=None, repr=False)
    protocol: str = "https"
    endpoint_suffix: str = DEFAULT_ENDPOINT_SUFFIX
    file_endpoint: str | None = None
    blob_endpoint: str | None = None
    sas_token: str | None = field(default=None, repr=False)

    @classmethod
    def parse(cls, connection_string: str) -> "ConnectionConfig":
        """
        Parse a `Key=Value;...` connection string.

        Keys are case-insensitive and values are split on the first '=' only,
        since account keys end in base64 padding.
        """
        if not isinstance(connection_string, str) or not connection_string.strip():
            raise InvalidConnectionStringError("Connection string is empty")

        settings: dict[str, str] = {}
        for segment in connection_string.split(";"):
            segment = segment.strip()
            if not segment:
                continue
            key, sep, value = segment.partition("=")
            key = key.strip().lower()
            value = value.strip()
            if not sep or not key:
                raise InvalidConnectionStringError(
                    f"Malformed connection string segment '{segment.split('=')[0]}'"
                )
            if key not in _KNOWN_KEYS:
                logger.debug("Ignoring connection string key %s", key)
                continue
            if key in settings:
                raise InvalidConnectionStringError(
                    f"Duplicate connection string key '{_KNOWN_KEYS[key]}'"
                )
            if not value:
                raise InvalidConnectionStringError(
                    f"Empty value for connection string key '{_KNOWN_KEYS[key]}'"
                )
            settings[key] = value

        account_name = settings.get("accountname")
        if not account_name:
            raise InvalidConnectionStringError("Connection string is missing AccountName")

        protocol = settings.get("defaultendpointsprotocol")
        if protocol is None:
            raise InvalidConnectionStringError(
                "Connection string is missing DefaultEndpointsProtocol"
            )
        if protocol.lower() not in _PROTOCOLS:
            raise InvalidConnectionStringError(f"Unsupported protocol '{protocol}'")

        account_key = settings.get("accountkey")
        sas_token = settings.get("sharedaccesssignature")
        if account_key is None and sas_token is None:
            raise InvalidConnectionStringError(
                "Connection string is missing AccountKey"
            )
        if account_key is not None:
            try:
                base64.b64decode(account_key, validate=True)
            except (binascii.Error, ValueError):
                raise InvalidConnectionStringError("AccountKey is not valid base64")

        return cls(
            account_name=account_name,
            account_key=account_key,
            protocol=protocol.lower(),
            endpoint_suffix=settings.get("endpointsuffix", DEFAULT_ENDPOINT_SUFFIX),
            file_endpoint=_strip_slash(settings.get("fileendpoint")),
            blob_endpoint=_strip_slash(settings.get("blobendpoint")),
            sas_token=sas_token.lstrip("?") if sas_token else None,
        )

    @classmethod
    def from_env(
        cls, variable: str = DEFAULT_CONNECTION_STRING_VARIABLE
    ) -> "ConnectionConfig":
        """
        Parse the connection string held in an environment variable.

        A `.env` file in the working directory is loaded first; variables
        already set in the process take precedence.
        """
        load_dotenv()
        value = os.environ.get(variable)
        if value is None:
            raise InvalidConnectionStringError(f"Environment variable {variable} is not set")
        return cls.parse(value)

    def to_connection_string(self) -> str:
        parts = [
            f"DefaultEndpointsProtocol={self.protocol}",
            f"AccountName={self.account_name}",
        ]
        if self.account_key is not None:
            parts.append(f"AccountKey={self.account_key}")
        if self.sas_token is not None:
            parts.append(f"SharedAccessSignature={self.sas_token}")
        parts.append(f"EndpointSuffix={self.endpoint_suffix}")
        if self.file_endpoint is not None:
            parts.append(f"FileEndpoint={self.file_endpoint}")
        if self.blob_endpoint is not None:
            parts.append(f"BlobEndpoint={self.blob_endpoint}")
        return ";".join(parts)

    def endpoint(self, service: str) -> str:
        explicit = {"file": self.file_endpoint, "blob": self.blob_endpoint}.get(service)
        if explicit:
            return explicit
        return f"{self.protocol}://{self.account_name}.{service}.{self.endpoint_suffix}"


def _strip_slash(url: str | None) -> str | None:
    return url.rstrip("/") if url else url


@dataclass(frozen=True)
class StorageAccount:
    """
    Account-level context: resolved endpoints, credentials and the backends
    that carry requests. Building one performs no I/O.
    """

    config: ConnectionConfig
    file_backend: FileServiceBackend = field(default_factory=AzureFileBackend)
    blob_backend: BlobServiceBackend = field(default_factory=AzureBlobBackend)

    @classmethod
    def parse(cls, connection_string: str, **backends) -> "StorageAccount":
        return cls(ConnectionConfig.parse(connection_string), **backends)

    async def __aenter__(self) -> "StorageAccount":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.file_backend.close()
        if self.blob_backend is not self.file_backend:
            await self.blob_backend.close()

    @property
    def name(self) -> str:
        return self.config.account_name

    @property
    def account_key(self) -> str | None:
        return self.config.account_key

    @property
    def sas_token(self) -> str | None:
        return self.config.sas_token

    @property
    def file_endpoint(self) -> str:
        return self.config.endpoint("file")

    @property
    def blob_endpoint(self) -> str:
        return self.config.endpoint("blob")

    def with_sas(self, sas_token: str) -> "StorageAccount":
        """Same account and backends, authenticated by a SAS token instead of the key."""
        config = dataclasses.replace(
            self.config, account_key=None, sas_token=sas_token.lstrip("?")
        )
        return dataclasses.replace(self, config=config)

    def file_service(self) -> FileServiceClient:
        return FileServiceClient(self)

    def blob_service(self) -> BlobServiceClient:
        return BlobServiceClient(self)
