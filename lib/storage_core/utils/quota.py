"""
Storage quota helpers.

The storage core only reports sizes (UploadResult.size is authoritative);
whether an upload is allowed is decided by the caller. These helpers cover
the arithmetic the caller needs for the local byte budget.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Union

from ..config.constants import ProviderType


@dataclass(frozen=True)
class StorageUsage:
    bytes_used: int
    max_bytes: int

    @classmethod
    def from_sizes(cls, sizes: Iterable[int], max_bytes: int) -> "StorageUsage":
        """Sum caller-supplied file sizes (None/negative entries count as 0)."""
        return cls(bytes_used=sum(max(size or 0, 0) for size in sizes), max_bytes=max_bytes)

    @property
    def bytes_remaining(self) -> int:
        return max(self.max_bytes - self.bytes_used, 0)

    @property
    def percent_used(self) -> float:
        if self.max_bytes <= 0:
            return 100.0
        return round(min(self.bytes_used / self.max_bytes * 100, 100.0), 1)

    def can_store(self, size: int) -> bool:
        return size <= self.bytes_remaining

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bytesUsed": self.bytes_used,
            "maxBytes": self.max_bytes,
            "bytesRemaining": self.bytes_remaining,
            "percentUsed": self.percent_used,
        }


def counts_against_quota(provider_type: Union[ProviderType, str]) -> bool:
    """Only files kept in platform storage consume the user's byte budget."""
    return ProviderType.parse(provider_type) == ProviderType.LOCAL
