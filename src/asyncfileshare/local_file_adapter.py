"""
On-disk emulation of storage accounts.

`LocalStorageEmulator` implements both backend protocols against a directory
tree and behaves like the service where callers can observe it: shared-key
and SAS authorization (signatures are recomputed with the SDK's signing
helpers), stored access policies, share quotas, idempotent creation and
server-side copies that stay pending until first polled.

Layout under the base path, per account:

    <account>/shares/<share>/...          share content
    <account>/share-meta/<share>.json     quota, stored policies, copy records
    <account>/containers/<container>/...  blob content
    <account>/container-meta/<name>.json  copy records
    <account>/file-service.json           metrics settings
"""

import asyncio
import hashlib
import hmac
import logging
import re
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Callable
from urllib.parse import parse_qs, unquote, urlsplit

from azure.storage.blob import generate_blob_sas, generate_container_sas
from azure.storage.fileshare import generate_file_sas, generate_share_sas

from .azure_common import as_utc
from .errors import (
    AuthorizationFailedError,
    CopyStateError,
    InvalidConfigurationError,
    NotFoundError,
    QuotaExceededError,
    TransportError,
)
from .models import (
    MAX_ACCESS_POLICIES,
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
)
from .serializers import JSONSerializer
from .storage_protocols import BlobServiceBackend, FileServiceBackend

if TYPE_CHECKING:
    from .clients import FileServiceClient
    from .connection import StorageAccount
    from .handles import (
        BlobHandle,
        ContainerHandle,
        DirectoryHandle,
        FileHandle,
        ShareHandle,
    )

logger = logging.getLogger(__name__)

SAS_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Share and container names: 3-63 chars, lowercase alphanumerics and single hyphens.
_NAME_PATTERN = re.compile(r"^(?!.*--)[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$")

# SAS permission characters, any one of which allows the operation.
_READ = "r"
_WRITE = "cw"
_DELETE = "d"
_LIST = "l"


def _ensure_within(base: Path, target: Path, strict: bool = True) -> Path:
    """
    Resolve target path and ensure it is inside base path.
    strict=True will fail if the target does not exist (good for read/delete).
    strict=False allows non-existing targets (good for upload).
    """
    base_resolved = base.resolve(strict=True)
    target_resolved = target.resolve(strict=strict)
    if not target_resolved.is_relative_to(base_resolved):
        raise InvalidConfigurationError(
            f"Path {target_resolved} escapes base directory {base_resolved}"
        )
    return target_resolved


# Global lock registry for concurrency safety
_lock_registry: dict[str, asyncio.Lock] = {}


def _get_global_lock(path: Path) -> asyncio.Lock:
    key = str(path.resolve())
    if key not in _lock_registry:
        _lock_registry[key] = asyncio.Lock()
    return _lock_registry[key]


def _discard_global_lock(path: Path) -> None:
    key = str(path.resolve())
    lock = _lock_registry.get(key)
    if lock is not None and not lock.locked():
        del _lock_registry[key]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_sas_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, SAS_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise AuthorizationFailedError(f"Malformed SAS timestamp '{value}'")


def _validate_name(kind: str, name: str) -> None:
    if not _NAME_PATTERN.match(name):
        raise InvalidConfigurationError(f"Invalid {kind} name '{name}'")


def _usage_bytes(root: Path) -> int:
    return sum(path.stat().st_size for path in root.rglob("*") if path.is_file())


def _copy_state(record: dict) -> CopyState:
    return CopyState(
        copy_id=record["id"],
        status=CopyStatus(record["status"]),
        source=record.get("source"),
        progress=record.get("progress"),
        status_description=record.get("description"),
    )


class LocalStorageEmulator(FileServiceBackend, BlobServiceBackend):
    """Local filesystem emulation of the file and blob services."""

    def __init__(
        self,
        base_path: str | Path,
        accounts: dict[str, str],
        clock: Callable[[], datetime] | None = None,
    ):
        """
        `accounts` maps account names to their base64 keys. `clock` returns
        the current UTC time and is what SAS expiry is checked against.
        """
        self._base_path = Path(base_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._accounts = dict(accounts)
        self.clock = clock or _utcnow
        self._serializer = JSONSerializer()
        # Source bytes of copies that have started but not completed.
        self._pending_copies: dict[str, bytes] = {}

    async def close(self) -> None:
        pass

    # ---------------------------
    # Layout
    # ---------------------------
    def _account_root(self, account_name: str) -> Path:
        root = _ensure_within(self._base_path, self._base_path / account_name, strict=False)
        root.mkdir(parents=True, exist_ok=True)
        return root

    def _share_root(self, account_name: str, share_name: str) -> Path:
        return self._account_root(account_name) / "shares" / share_name

    def _share_meta_path(self, account_name: str, share_name: str) -> Path:
        name = self._serializer.name_strategy(share_name)
        return self._account_root(account_name) / "share-meta" / name

    def _container_root(self, account_name: str, container_name: str) -> Path:
        return self._account_root(account_name) / "containers" / container_name

    def _container_meta_path(self, account_name: str, container_name: str) -> Path:
        name = self._serializer.name_strategy(container_name)
        return self._account_root(account_name) / "container-meta" / name

    def _service_path(self, account_name: str) -> Path:
        return self._account_root(account_name) / self._serializer.name_strategy("file-service")

    def _read_json(self, path: Path) -> dict:
        if not path.exists():
            return {}
        return self._serializer.deserialize(path.read_bytes())

    def _write_json(self, path: Path, data: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self._serializer.serialize(data))

    def _require_share(self, share: "ShareHandle") -> Path:
        root = self._share_root(share.account.name, share.name)
        if not root.is_dir():
            raise NotFoundError(f"Share '{share.name}' not found")
        return root

    def _require_container(self, container: "ContainerHandle") -> Path:
        root = self._container_root(container.account.name, container.name)
        if not root.is_dir():
            raise NotFoundError(f"Container '{container.name}' not found")
        return root

    def _file_path(self, root: Path, path: tuple[str, ...]) -> Path:
        return _ensure_within(root, root.joinpath(*path), strict=False)

    # ---------------------------
    # Authorization
    # ---------------------------
    def _authorize(
        self,
        account: "StorageAccount",
        service: str,
        container: str,
        path: tuple[str, ...] = (),
        allowed: str | None = None,
    ) -> None:
        """
        Check the account's credential for one request.

        `allowed` lists the SAS permissions that grant the request; None
        means the request needs the shared key.
        """
        key = self._accounts.get(account.name)
        if key is None:
            raise TransportError(f"Unknown storage account '{account.name}'")
        if account.sas_token:
            if allowed is None:
                raise AuthorizationFailedError(
                    f"Operation on '{container}' requires the account key"
                )
            self._check_sas(account.name, key, account.sas_token, service, container, path, allowed)
            return
        if not account.account_key or not hmac.compare_digest(account.account_key, key):
            raise AuthorizationFailedError(f"Invalid key for account '{account.name}'")

    def _expected_signature(
        self,
        account_name: str,
        key: str,
        params: dict[str, str],
        service: str,
        container: str,
        path: tuple[str, ...],
    ) -> str | None:
        kwargs = {
            "permission": params.get("sp"),
            "expiry": params.get("se"),
            "start": params.get("st"),
            "policy_id": params.get("si"),
            "ip": params.get("sip"),
            "protocol": params.get("spr"),
        }
        resource = params.get("sr")
        try:
            if service == "file" and resource == "s":
                token = generate_share_sas(
                    account_name=account_name, share_name=container, account_key=key, **kwargs
                )
            elif service == "file" and resource == "f" and path:
                token = generate_file_sas(
                    account_name=account_name,
                    share_name=container,
                    file_path=list(path),
                    account_key=key,
                    **kwargs,
                )
            elif service == "blob" and resource == "c":
                token = generate_container_sas(
                    account_name=account_name, container_name=container, account_key=key, **kwargs
                )
            elif service == "blob" and resource == "b" and path:
                token = generate_blob_sas(
                    account_name=account_name,
                    container_name=container,
                    blob_name="/".join(path),
                    account_key=key,
                    **kwargs,
                )
            else:
                return None
        except ValueError:
            # Ad hoc token without expiry or permissions
            return None
        return parse_qs(token)["sig"][0]

    def _check_sas(
        self,
        account_name: str,
        key: str,
        token: str,
        service: str,
        container: str,
        path: tuple[str, ...],
        allowed: str,
    ) -> None:
        params = {
            name: values[0]
            for name, values in parse_qs(token.lstrip("?"), keep_blank_values=True).items()
        }
        signature = params.get("sig")
        if not signature or not params.get("sr"):
            raise AuthorizationFailedError("Malformed SAS token")
        expected = self._expected_signature(account_name, key, params, service, container, path)
        if expected is None or not hmac.compare_digest(signature, expected):
            raise AuthorizationFailedError(
                f"SAS signature does not match '{'/'.join((container,) + path)}'"
            )

        permissions = params.get("sp") or ""
        start = _parse_sas_time(params.get("st"))
        expiry = _parse_sas_time(params.get("se"))
        policy_name = params.get("si")
        if policy_name:
            stored = self._stored_policies(account_name, service, container).get(policy_name)
            if stored is None:
                raise AuthorizationFailedError(f"Access policy '{policy_name}' does not exist")
            # A field may come from the token or the stored policy, never both.
            for field, in_token, in_policy in (
                ("permissions", permissions, stored.permissions),
                ("start", start, stored.start),
                ("expiry", expiry, stored.expiry),
            ):
                if in_token and in_policy:
                    raise AuthorizationFailedError(
                        f"SAS token repeats {field} set by access policy '{policy_name}'"
                    )
            permissions = permissions or stored.permissions.to_string()
            start = start or stored.start
            expiry = expiry or stored.expiry

        now = self.clock()
        if expiry is None or now >= expiry:
            raise AuthorizationFailedError("SAS token has expired")
        if start is not None and now < start:
            raise AuthorizationFailedError("SAS token is not valid yet")
        if not any(char in permissions for char in allowed):
            raise AuthorizationFailedError(
                f"SAS token grants '{permissions}', operation needs one of '{allowed}'"
            )

    def _stored_policies(
        self, account_name: str, service: str, container: str
    ) -> dict[str, SharedAccessPolicy]:
        if service != "file":
            return {}
        meta = self._read_json(self._share_meta_path(account_name, container))
        return {
            name: SharedAccessPolicy(
                permissions=Permission.from_string(entry.get("permissions") or ""),
                expiry=entry.get("expiry"),
                start=entry.get("start"),
            )
            for name, entry in meta.get("policies", {}).items()
        }

    # ---------------------------
    # Shares
    # ---------------------------
    async def create_share(self, share: "ShareHandle", quota: Quota | None) -> bool:
        self._authorize(share.account, "file", share.name)
        _validate_name("share", share.name)
        root = self._share_root(share.account.name, share.name)
        root.parent.mkdir(parents=True, exist_ok=True)
        try:
            # mkdir is atomic, so racing creators see exactly one winner.
            root.mkdir()
        except FileExistsError:
            logger.debug("Share %s already exists", share.name)
            return False
        meta_path = self._share_meta_path(share.account.name, share.name)
        async with _get_global_lock(meta_path):
            self._write_json(
                meta_path,
                {
                    "quota": quota.gib if isinstance(quota, Limit) else None,
                    "policies": {},
                    "copies": {},
                    "created": self.clock(),
                },
            )
        logger.info("Created share %s", share.name)
        return True

    async def delete_share(self, share: "ShareHandle") -> bool:
        self._authorize(share.account, "file", share.name)
        root = self._share_root(share.account.name, share.name)
        if not root.is_dir():
            return False
        meta_path = self._share_meta_path(share.account.name, share.name)
        async with _get_global_lock(meta_path):
            shutil.rmtree(root)
            meta_path.unlink(missing_ok=True)
        _discard_global_lock(meta_path)
        logger.info("Deleted share %s", share.name)
        return True

    async def share_exists(self, share: "ShareHandle") -> bool:
        self._authorize(share.account, "file", share.name, allowed=_READ)
        return self._share_root(share.account.name, share.name).is_dir()

    async def get_share_properties(self, share: "ShareHandle") -> SharePropertiesSnapshot:
        self._authorize(share.account, "file", share.name)
        root = self._require_share(share)
        meta_path = self._share_meta_path(share.account.name, share.name)
        raw = meta_path.read_bytes() if meta_path.exists() else b"{}"
        meta = self._serializer.deserialize(raw)
        quota = meta.get("quota")
        return SharePropertiesSnapshot(
            quota=Limit(quota) if quota else UNSET,
            usage_gib=ShareStats(_usage_bytes(root)).usage_gib,
            etag=f'"{hashlib.md5(raw).hexdigest()}"',
            last_modified=datetime.fromtimestamp(root.stat().st_mtime, timezone.utc),
        )

    async def set_share_properties(
        self, share: "ShareHandle", properties: SharePropertiesSnapshot
    ) -> None:
        self._authorize(share.account, "file", share.name)
        self._require_share(share)
        meta_path = self._share_meta_path(share.account.name, share.name)
        async with _get_global_lock(meta_path):
            meta = self._read_json(meta_path)
            # Enforcement is forward-looking: a quota below usage is accepted.
            meta["quota"] = properties.quota.gib if isinstance(properties.quota, Limit) else None
            self._write_json(meta_path, meta)
        logger.info("Set quota of share %s to %r", share.name, properties.quota)

    async def get_share_stats(self, share: "ShareHandle") -> ShareStats:
        self._authorize(share.account, "file", share.name)
        return ShareStats(_usage_bytes(self._require_share(share)))

    async def get_access_policies(self, share: "ShareHandle") -> dict[str, SharedAccessPolicy]:
        self._authorize(share.account, "file", share.name)
        self._require_share(share)
        return self._stored_policies(share.account.name, "file", share.name)

    async def set_access_policies(
        self, share: "ShareHandle", policies: dict[str, SharedAccessPolicy]
    ) -> None:
        self._authorize(share.account, "file", share.name)
        self._require_share(share)
        if len(policies) > MAX_ACCESS_POLICIES:
            raise InvalidConfigurationError(
                f"A share holds at most {MAX_ACCESS_POLICIES} stored access policies"
            )
        meta_path = self._share_meta_path(share.account.name, share.name)
        async with _get_global_lock(meta_path):
            meta = self._read_json(meta_path)
            meta["policies"] = {
                name: {
                    "permissions": policy.permissions.to_string(),
                    "start": as_utc(policy.start),
                    "expiry": as_utc(policy.expiry),
                }
                for name, policy in policies.items()
            }
            self._write_json(meta_path, meta)
        logger.info("Stored %d access policies on share %s", len(policies), share.name)

    # ---------------------------
    # Directories
    # ---------------------------
    async def directory_exists(self, directory: "DirectoryHandle") -> bool:
        share = directory.share
        self._authorize(share.account, "file", share.name, directory.path, _READ)
        root = self._share_root(share.account.name, share.name)
        if not root.is_dir():
            return False
        return self._file_path(root, directory.path).is_dir()

    async def create_directory(self, directory: "DirectoryHandle") -> bool:
        share = directory.share
        self._authorize(share.account, "file", share.name, directory.path, _WRITE)
        root = self._require_share(share)
        if not directory.path:
            return False
        target = self._file_path(root, directory.path)
        if not target.parent.is_dir():
            raise NotFoundError(f"Parent of directory '{directory.url}' not found")
        try:
            target.mkdir()
        except FileExistsError:
            return False
        logger.debug("Created directory %s", directory.url)
        return True

    async def list_directory(self, directory: "DirectoryHandle") -> list[DirectoryEntry]:
        share = directory.share
        self._authorize(share.account, "file", share.name, directory.path, _LIST)
        root = self._require_share(share)
        target = self._file_path(root, directory.path)
        if not target.is_dir():
            raise NotFoundError(f"Directory '{directory.url}' not found")
        return [
            DirectoryEntry(name=child.name, is_directory=child.is_dir())
            for child in sorted(target.iterdir())
        ]

    # ---------------------------
    # Files
    # ---------------------------
    def _write_within_quota(self, root: Path, target: Path, data: bytes, meta: dict) -> None:
        quota = meta.get("quota")
        if quota:
            current = target.stat().st_size if target.is_file() else 0
            if _usage_bytes(root) - current + len(data) > Limit(quota).bytes:
                raise QuotaExceededError(f"Share quota of {quota} GiB would be exceeded")
        target.write_bytes(data)

    async def file_exists(self, file: "FileHandle") -> bool:
        share = file.share
        self._authorize(share.account, "file", share.name, file.path, _READ)
        root = self._share_root(share.account.name, share.name)
        if not root.is_dir():
            return False
        return self._file_path(root, file.path).is_file()

    async def upload_file(self, file: "FileHandle", data: bytes) -> None:
        share = file.share
        self._authorize(share.account, "file", share.name, file.path, _WRITE)
        root = self._require_share(share)
        target = self._file_path(root, file.path)
        if not target.parent.is_dir():
            raise NotFoundError(f"Parent directory of '{file.url}' not found")
        if target.is_dir():
            raise InvalidConfigurationError(f"'{file.url}' is a directory")
        meta_path = self._share_meta_path(share.account.name, share.name)
        async with _get_global_lock(meta_path):
            meta = self._read_json(meta_path)
            self._write_within_quota(root, target, data, meta)
            # A fresh upload clears any copy record on the file.
            if meta.get("copies", {}).pop("/".join(file.path), None) is not None:
                self._write_json(meta_path, meta)
        logger.debug("Uploaded %d bytes to %s", len(data), file.url)

    async def download_file(self, file: "FileHandle", stream: BinaryIO) -> int:
        share = file.share
        self._authorize(share.account, "file", share.name, file.path, _READ)
        target = self._file_path(self._require_share(share), file.path)
        if not target.is_file():
            raise NotFoundError(f"File '{file.url}' not found")
        data = target.read_bytes()
        stream.write(data)
        return len(data)

    async def delete_file(self, file: "FileHandle") -> None:
        share = file.share
        self._authorize(share.account, "file", share.name, file.path, _DELETE)
        target = self._file_path(self._require_share(share), file.path)
        if not target.is_file():
            raise NotFoundError(f"File '{file.url}' not found")
        meta_path = self._share_meta_path(share.account.name, share.name)
        async with _get_global_lock(meta_path):
            target.unlink()
            meta = self._read_json(meta_path)
            if meta.get("copies", {}).pop("/".join(file.path), None) is not None:
                self._write_json(meta_path, meta)
        logger.debug("Deleted %s", file.url)

    async def start_file_copy(self, file: "FileHandle", source_url: str) -> CopyState:
        share = file.share
        self._authorize(share.account, "file", share.name, file.path, _WRITE)
        root = self._require_share(share)
        if not self._file_path(root, file.path).parent.is_dir():
            raise NotFoundError(f"Parent directory of '{file.url}' not found")
        data = self._read_copy_source(source_url, share.account, "file")
        meta_path = self._share_meta_path(share.account.name, share.name)
        return await self._record_copy(meta_path, "/".join(file.path), source_url, data)

    async def get_file_copy_state(self, file: "FileHandle") -> CopyState | None:
        share = file.share
        self._authorize(share.account, "file", share.name, file.path, _READ)
        root = self._require_share(share)
        meta_path = self._share_meta_path(share.account.name, share.name)
        return await self._poll_copy(meta_path, root, file.path)

    async def abort_file_copy(self, file: "FileHandle", copy_id: str) -> None:
        share = file.share
        self._authorize(share.account, "file", share.name, file.path, _WRITE)
        root = self._require_share(share)
        meta_path = self._share_meta_path(share.account.name, share.name)
        await self._abort_copy(meta_path, root, file.path, copy_id)

    # ---------------------------
    # Service properties
    # ---------------------------
    async def get_service_properties(self, service: "FileServiceClient") -> ServiceProperties:
        self._authorize(service.account, "file", "")
        stored = self._read_json(self._service_path(service.account.name))

        def load(granularity: MetricsGranularity) -> MetricsConfig:
            entry = stored.get(granularity.value, {})
            return MetricsConfig(
                granularity=granularity,
                level=MetricsLevel(entry.get("level", MetricsLevel.NONE.value)),
                retention_days=entry.get("retention_days"),
                version=entry.get("version", "1.0"),
            )

        return ServiceProperties(
            hour_metrics=load(MetricsGranularity.HOUR),
            minute_metrics=load(MetricsGranularity.MINUTE),
        )

    async def set_service_properties(
        self, service: "FileServiceClient", metrics: list[MetricsConfig]
    ) -> None:
        self._authorize(service.account, "file", "")
        for config in metrics:
            config.validate()
        path = self._service_path(service.account.name)
        async with _get_global_lock(path):
            stored = self._read_json(path)
            for config in metrics:
                stored[config.granularity.value] = {
                    "level": config.level.value,
                    "retention_days": config.retention_days,
                    "version": config.version,
                }
            self._write_json(path, stored)

    # ---------------------------
    # Containers and blobs
    # ---------------------------
    async def create_container(self, container: "ContainerHandle") -> bool:
        self._authorize(container.account, "blob", container.name)
        _validate_name("container", container.name)
        root = self._container_root(container.account.name, container.name)
        root.parent.mkdir(parents=True, exist_ok=True)
        try:
            root.mkdir()
        except FileExistsError:
            return False
        logger.info("Created container %s", container.name)
        return True

    async def container_exists(self, container: "ContainerHandle") -> bool:
        self._authorize(container.account, "blob", container.name, allowed=_READ)
        return self._container_root(container.account.name, container.name).is_dir()

    def _blob_path(self, blob: "BlobHandle") -> tuple[str, ...]:
        return tuple(blob.name.split("/"))

    async def blob_exists(self, blob: "BlobHandle") -> bool:
        container = blob.container
        path = self._blob_path(blob)
        self._authorize(container.account, "blob", container.name, path, _READ)
        root = self._container_root(container.account.name, container.name)
        if not root.is_dir():
            return False
        return self._file_path(root, path).is_file()

    async def upload_blob(self, blob: "BlobHandle", data: bytes) -> None:
        container = blob.container
        path = self._blob_path(blob)
        self._authorize(container.account, "blob", container.name, path, _WRITE)
        root = self._require_container(container)
        target = self._file_path(root, path)
        meta_path = self._container_meta_path(container.account.name, container.name)
        async with _get_global_lock(meta_path):
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            meta = self._read_json(meta_path)
            if meta.get("copies", {}).pop(blob.name, None) is not None:
                self._write_json(meta_path, meta)
        logger.debug("Uploaded %d bytes to %s", len(data), blob.url)

    async def download_blob(self, blob: "BlobHandle", stream: BinaryIO) -> int:
        container = blob.container
        path = self._blob_path(blob)
        self._authorize(container.account, "blob", container.name, path, _READ)
        target = self._file_path(self._require_container(container), path)
        if not target.is_file():
            raise NotFoundError(f"Blob '{blob.url}' not found")
        data = target.read_bytes()
        stream.write(data)
        return len(data)

    async def start_blob_copy(self, blob: "BlobHandle", source_url: str) -> CopyState:
        container = blob.container
        path = self._blob_path(blob)
        self._authorize(container.account, "blob", container.name, path, _WRITE)
        self._require_container(container)
        data = self._read_copy_source(source_url, container.account, "blob")
        meta_path = self._container_meta_path(container.account.name, container.name)
        return await self._record_copy(meta_path, blob.name, source_url, data)

    async def get_blob_copy_state(self, blob: "BlobHandle") -> CopyState | None:
        container = blob.container
        path = self._blob_path(blob)
        self._authorize(container.account, "blob", container.name, path, _READ)
        root = self._require_container(container)
        meta_path = self._container_meta_path(container.account.name, container.name)
        return await self._poll_copy(meta_path, root, path)

    async def abort_blob_copy(self, blob: "BlobHandle", copy_id: str) -> None:
        container = blob.container
        path = self._blob_path(blob)
        self._authorize(container.account, "blob", container.name, path, _WRITE)
        root = self._require_container(container)
        meta_path = self._container_meta_path(container.account.name, container.name)
        await self._abort_copy(meta_path, root, path, copy_id)

    # ---------------------------
    # Copies
    # ---------------------------
    def _read_copy_source(
        self, source_url: str, destination: "StorageAccount", destination_service: str
    ) -> bytes:
        """Authorize and read a copy source the way the service would."""
        parts = urlsplit(source_url)
        labels = (parts.hostname or "").split(".")
        segments = [unquote(segment) for segment in parts.path.split("/") if segment]
        if len(labels) < 2 or labels[1] not in ("file", "blob") or len(segments) < 2:
            raise InvalidConfigurationError(f"Unrecognised copy source '{parts.path}'")
        account_name, service = labels[0], labels[1]
        container, path = segments[0], tuple(segments[1:])

        key = self._accounts.get(account_name)
        if key is None:
            raise TransportError(f"Unknown storage account '{account_name}'")
        if parts.query:
            self._check_sas(account_name, key, parts.query, service, container, path, _READ)
        elif not (
            service == "file"
            and destination_service == "file"
            and account_name == destination.name
            and destination.account_key
        ):
            raise AuthorizationFailedError(
                "Copy source outside the destination's file service must carry a SAS"
            )

        if service == "file":
            root = self._share_root(account_name, container)
        else:
            root = self._container_root(account_name, container)
        if not root.is_dir():
            raise NotFoundError(f"Copy source container '{container}' not found")
        source = self._file_path(root, path)
        if not source.is_file():
            raise NotFoundError(f"Copy source '{'/'.join(path)}' not found")
        return source.read_bytes()

    async def _record_copy(
        self, meta_path: Path, key: str, source_url: str, data: bytes
    ) -> CopyState:
        copy_id = str(uuid.uuid4())
        record = {
            "id": copy_id,
            "status": CopyStatus.PENDING.value,
            "source": source_url.split("?", 1)[0],
            "progress": f"0/{len(data)}",
            "started": self.clock(),
        }
        async with _get_global_lock(meta_path):
            meta = self._read_json(meta_path)
            meta.setdefault("copies", {})[key] = record
            self._pending_copies[copy_id] = data
            self._write_json(meta_path, meta)
        logger.info("Started copy %s from %s", copy_id, record["source"])
        return _copy_state(record)

    async def _poll_copy(
        self, meta_path: Path, root: Path, path: tuple[str, ...]
    ) -> CopyState | None:
        """Return the copy record, completing a pending copy on first poll."""
        async with _get_global_lock(meta_path):
            meta = self._read_json(meta_path)
            record = meta.get("copies", {}).get("/".join(path))
            if record is None:
                return None
            if record["status"] == CopyStatus.PENDING.value:
                data = self._pending_copies.pop(record["id"], None)
                if data is None:
                    record["status"] = CopyStatus.FAILED.value
                    record["description"] = "Copy source data is no longer available"
                else:
                    target = self._file_path(root, path)
                    try:
                        target.parent.mkdir(parents=True, exist_ok=True)
                        self._write_within_quota(root, target, data, meta)
                    except QuotaExceededError as e:
                        record["status"] = CopyStatus.FAILED.value
                        record["description"] = str(e)
                    else:
                        record["status"] = CopyStatus.SUCCESS.value
                        record["progress"] = f"{len(data)}/{len(data)}"
                record["completed"] = self.clock()
                self._write_json(meta_path, meta)
            return _copy_state(record)

    async def _abort_copy(
        self, meta_path: Path, root: Path, path: tuple[str, ...], copy_id: str
    ) -> None:
        async with _get_global_lock(meta_path):
            meta = self._read_json(meta_path)
            record = meta.get("copies", {}).get("/".join(path))
            if record is None or record["id"] != copy_id:
                raise CopyStateError(f"No copy '{copy_id}' on '{'/'.join(path)}'")
            if record["status"] != CopyStatus.PENDING.value:
                raise CopyStateError(f"Copy '{copy_id}' is not pending")
            self._pending_copies.pop(copy_id, None)
            record["status"] = CopyStatus.ABORTED.value
            record["completed"] = self.clock()
            # The service leaves a zero-length destination behind.
            target = self._file_path(root, path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(b"")
            self._write_json(meta_path, meta)
        logger.info("Aborted copy %s", copy_id)
