import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, Flag, auto

from .errors import InvalidConfigurationError

GIB = 1024**3

# Azure rejects a sixth stored access policy on a share.
MAX_ACCESS_POLICIES = 5

MAX_RETENTION_DAYS = 365


class Permission(Flag):
    READ = auto()
    CREATE = auto()
    WRITE = auto()
    DELETE = auto()
    LIST = auto()

    @classmethod
    def from_string(cls, value: str) -> "Permission":
        permissions = cls(0)
        for char in value:
            try:
                permissions |= _PERMISSION_CHARS[char]
            except KeyError:
                raise InvalidConfigurationError(f"Unknown permission '{char}'")
        return permissions

    def to_string(self) -> str:
        """Render in the service's canonical order (rcwdl)."""
        return "".join(char for char, flag in _PERMISSION_CHARS.items() if flag in self)


_PERMISSION_CHARS = {
    "r": Permission.READ,
    "c": Permission.CREATE,
    "w": Permission.WRITE,
    "d": Permission.DELETE,
    "l": Permission.LIST,
}


class Unset:
    """Quota variant meaning the share has no cap."""

    _instance = None

    def __new__(cls) -> "Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"


UNSET = Unset()


@dataclass(frozen=True)
class Limit:
    """Quota variant capping a share at `gib` gibibytes."""

    gib: int

    def __post_init__(self) -> None:
        if isinstance(self.gib, bool) or not isinstance(self.gib, int) or self.gib < 1:
            raise InvalidConfigurationError(
                f"Quota must be a positive number of GiB, got {self.gib!r}"
            )

    @property
    def bytes(self) -> int:
        return self.gib * GIB


Quota = Unset | Limit


@dataclass
class SharePropertiesSnapshot:
    """
    Point-in-time copy of a share's properties.

    Returned by ShareHandle.fetch_attributes() and stale from that moment on.
    Changing a field does nothing remotely until the snapshot is passed to
    ShareHandle.set_properties(); concurrent pushes are last-write-wins.
    """

    quota: Quota = UNSET
    usage_gib: int = 0
    etag: str | None = None
    last_modified: datetime | None = None


@dataclass(frozen=True)
class ShareStats:
    usage_bytes: int

    @property
    def usage_gib(self) -> int:
        return math.ceil(self.usage_bytes / GIB)


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    is_directory: bool


@dataclass(frozen=True)
class SharedAccessPolicy:
    """
    A time-bounded permission grant.

    Ad hoc policies are embedded in the token itself and need both
    `permissions` and `expiry`. Stored policies are registered on a share
    under a name and may leave fields for the token to supply.
    """

    permissions: Permission = Permission(0)
    expiry: datetime | None = None
    start: datetime | None = None


class CopyStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(frozen=True)
class CopyState:
    copy_id: str
    status: CopyStatus
    source: str | None = None
    progress: str | None = None
    status_description: str | None = None


class WriteMode(Enum):
    OVERWRITE = "wb"  # Truncate the local file first
    APPEND = "ab"  # Write after existing local bytes, creating the file if needed


class MetricsGranularity(Enum):
    HOUR = "hour"
    MINUTE = "minute"


class MetricsLevel(Enum):
    NONE = "none"  # Metrics disabled
    SERVICE = "service"  # Aggregate service metrics only
    SERVICE_AND_API = "service_and_api"  # Service metrics plus per-API breakdown


@dataclass(frozen=True)
class MetricsConfig:
    granularity: MetricsGranularity
    level: MetricsLevel = MetricsLevel.NONE
    retention_days: int | None = None
    version: str = "1.0"

    def validate(self) -> None:
        if self.retention_days is None:
            return
        if not 0 <= self.retention_days <= MAX_RETENTION_DAYS:
            raise InvalidConfigurationError(
                f"retention_days must be between 0 and {MAX_RETENTION_DAYS}, "
                f"got {self.retention_days}"
            )


@dataclass(frozen=True)
class ServiceProperties:
    hour_metrics: MetricsConfig
    minute_metrics: MetricsConfig

    def get(self, granularity: MetricsGranularity) -> MetricsConfig:
        if granularity is MetricsGranularity.HOUR:
            return self.hour_metrics
        return self.minute_metrics
