"""Request and response messages of the lvmd volume services."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional


class StatusCode(IntEnum):
    """Status codes carried by a failed service call."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


class RpcError(Exception):
    """A service call that failed with a status code."""

    def __init__(self, code: StatusCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"rpc error: code = {self.code.name} desc = {self.message}"


def requested_bytes(size_bytes: int, size_gb: int) -> int:
    """Return the requested size, falling back to the legacy gigabyte field."""
    if size_bytes > 0:
        return size_bytes
    return size_gb << 30


@dataclass
class LogicalVolumeInfo:
    name: str = ""
    size_gb: int = 0
    size_bytes: int = 0
    dev_major: int = 0
    dev_minor: int = 0
    tags: list[str] = field(default_factory=list)
    path: str = ""


@dataclass
class CreateLVRequest:
    name: str = ""
    device_class: str = ""
    size_gb: int = 0
    size_bytes: int = 0
    tags: list[str] = field(default_factory=list)
    lvcreate_option_class: str = ""


@dataclass
class CreateLVResponse:
    volume: Optional[LogicalVolumeInfo] = None


@dataclass
class RemoveLVRequest:
    name: str = ""
    device_class: str = ""


@dataclass
class ResizeLVRequest:
    name: str = ""
    device_class: str = ""
    size_gb: int = 0
    size_bytes: int = 0


@dataclass
class CreateLVSnapshotRequest:
    name: str = ""
    device_class: str = ""
    source_volume: str = ""
    size_gb: int = 0
    size_bytes: int = 0
    access_type: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass
class CreateLVSnapshotResponse:
    snapshot: Optional[LogicalVolumeInfo] = None


@dataclass
class GetLVListRequest:
    device_class: str = ""


@dataclass
class GetLVListResponse:
    volumes: list[LogicalVolumeInfo] = field(default_factory=list)


@dataclass
class GetFreeBytesRequest:
    device_class: str = ""


@dataclass
class GetFreeBytesResponse:
    free_bytes: int = 0


@dataclass
class ThinPoolItem:
    data_percent: float = 0.0
    metadata_percent: float = 0.0
    overprovision_bytes: int = 0
    size_bytes: int = 0


@dataclass
class WatchItem:
    device_class: str = ""
    free_bytes: int = 0
    size_bytes: int = 0
    thin_pool: Optional[ThinPoolItem] = None


@dataclass
class WatchResponse:
    free_bytes: int = 0
    items: list[WatchItem] = field(default_factory=list)

    def merge(self, other: "WatchResponse") -> None:
        """Merge ``other`` in: set scalars overwrite, items are appended as copies."""
        if other.free_bytes:
            self.free_bytes = other.free_bytes
        self.items.extend(copy.deepcopy(item) for item in other.items)