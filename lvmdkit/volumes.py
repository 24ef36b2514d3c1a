"""Volume groups, thin pools and logical volumes managed through lvm."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from lvmdkit.errors import (
    MINIMUM_SECTOR_SIZE,
    NoMultipleOfSectorSizeError,
    NotFoundError,
    is_lvm_not_found,
)
from lvmdkit.report import (
    LVRecord,
    VGRecord,
    get_lv_report,
    get_lvm_state,
    get_vg_report,
)


def _full_name(name: str, vg: "VolumeGroup") -> str:
    return f"{vg.name}/{name}"


def _tag_args(tags: Optional[Iterable[str]]) -> list[str]:
    args: list[str] = []
    for tag in tags or ():
        args.extend(("--addtag", tag))
    return args


def _stripe_args(stripe: int, stripe_size: str) -> list[str]:
    if not stripe:
        return []
    args = ["-i", str(stripe)]
    if stripe_size:
        args.extend(("-I", stripe_size))
    return args


class VolumeGroup:
    """A volume group as last reported by lvm.

    The state does not refresh itself; call :meth:`update` when it may
    have changed.
    """

    def __init__(
        self,
        runner: Any,
        state: VGRecord,
        report_lvs: Optional[dict[str, LVRecord]] = None,
    ) -> None:
        self.runner = runner
        self.state = state
        # Filled by list_volume_groups, which fetches VGs and LVs together.
        self.report_lvs = report_lvs

    def __repr__(self) -> str:
        return f"VolumeGroup(name={self.name!r})"

    @property
    def name(self) -> str:
        return self.state.name

    @property
    def size(self) -> int:
        """Capacity of the volume group in bytes."""
        return self.state.size

    @property
    def free(self) -> int:
        """Free space of the volume group in bytes."""
        return self.state.free

    def update(self) -> None:
        """Reload the volume group state from lvm."""
        fresh = find_volume_group(self.runner, self.name)
        self.report_lvs = None
        self.state = fresh.state

    def _get_lvs(self, lv_name: str) -> dict[str, LVRecord]:
        if self.report_lvs:
            if lv_name:
                if lv_name in self.report_lvs:
                    return {lv_name: self.report_lvs[lv_name]}
                raise NotFoundError()
            return self.report_lvs
        target = f"{self.name}/{lv_name}" if lv_name else self.name
        return get_lv_report(self.runner, target)

    def _records(self, lv_name: str) -> dict[str, LVRecord]:
        if self.report_lvs is not None:
            return self.report_lvs
        try:
            return self._get_lvs(lv_name)
        except NotFoundError:
            # An empty list is a valid answer.
            return {}

    def _convert(self, record: LVRecord) -> "LogicalVolume":
        origin = record.origin or None
        pool = record.pool_lv or None
        size = record.size
        if origin is not None and pool is None:
            # A classic (non-thin) snapshot reports the origin's size.
            size = record.origin_size
        return LogicalVolume(
            name=record.name,
            path=record.path,
            vg=self,
            size=size,
            origin_name=origin,
            pool_name=pool,
            major=record.major,
            minor=record.minor,
            tags=list(record.tags),
        )

    def _list_volumes(self, name: str) -> dict[str, "LogicalVolume"]:
        return {
            record.name: self._convert(record)
            for record in self._records(name).values()
            if not record.is_thin_pool()
        }

    def find_volume(self, name: str) -> "LogicalVolume":
        """Return the logical volume called ``name``."""
        volumes = self._list_volumes(name)
        if name not in volumes:
            raise NotFoundError()
        return volumes[name]

    def list_volumes(self) -> dict[str, "LogicalVolume"]:
        """Return every logical volume that is not a thin pool, by name."""
        return self._list_volumes("")

    def create_volume(
        self,
        name: str,
        size: int,
        tags: Optional[Sequence[str]] = None,
        stripe: int = 0,
        stripe_size: str = "",
        lvcreate_options: Optional[Sequence[str]] = None,
    ) -> None:
        """Create a thick logical volume of ``size`` bytes."""
        if size % MINIMUM_SECTOR_SIZE != 0:
            raise NoMultipleOfSectorSizeError()
        args = ["lvcreate", "-n", name, "-L", f"{size}b", "-W", "y", "-y"]
        args += _tag_args(tags)
        args += _stripe_args(stripe, stripe_size)
        args += list(lvcreate_options or ())
        args.append(self.name)
        self.runner.call(*args)

    def find_pool(self, name: str) -> "ThinPool":
        """Return the thin pool called ``name``."""
        pools = self.list_pools(name)
        if name not in pools:
            raise NotFoundError()
        return pools[name]

    def list_pools(self, pool_name: str = "") -> dict[str, "ThinPool"]:
        """Return the thin pools of this volume group, by name."""
        return {
            record.name: ThinPool(self, record)
            for record in self._records(pool_name).values()
            if record.is_thin_pool()
        }

    def create_pool(self, name: str, size: int) -> "ThinPool":
        """Create a thin pool of ``size`` bytes and return it."""
        self.runner.call(
            "lvcreate", "-T", f"{self.name}/{name}", "--size", f"{size}b"
        )
        return self.find_pool(name)

    def remove_volume(self, name: str) -> None:
        """Remove the logical volume called ``name``."""
        try:
            self.runner.call("lvremove", "-f", _full_name(name, self))
        except Exception as err:
            if is_lvm_not_found(err):
                raise NotFoundError(f"not found: {err}") from err
            raise


def find_volume_group(runner: Any, name: str) -> VolumeGroup:
    """Look up the volume group called ``name``."""
    return VolumeGroup(runner, get_vg_report(runner, name))


def search_volume_group_list(
    vgs: Iterable[VolumeGroup], name: str
) -> VolumeGroup:
    """Pick the volume group called ``name`` out of ``vgs``."""
    for vg in vgs:
        if vg.name == name:
            return vg
    raise NotFoundError()


def list_volume_groups(runner: Any) -> list[VolumeGroup]:
    """List all volume groups with their logical volumes in one lvm call."""
    vgs, lvs = get_lvm_state(runner)
    return [
        VolumeGroup(
            runner,
            vg,
            {lv.name: lv for lv in lvs if lv.vg_name == vg.name},
        )
        for vg in vgs
    ]


@dataclass
class ThinPoolUsage:
    """Usage figures of a thin pool."""

    data_percent: float = 0.0
    metadata_percent: float = 0.0
    virtual_bytes: int = 0
    size_bytes: int = 0


class ThinPool:
    """A thin pool inside a volume group."""

    def __init__(self, vg: VolumeGroup, state: LVRecord) -> None:
        self.vg = vg
        self.state = state

    def __repr__(self) -> str:
        return f"ThinPool(name={self.name!r}, vg={self.vg.name!r})"

    @property
    def name(self) -> str:
        return self.state.name

    @property
    def full_name(self) -> str:
        return self.state.full_name

    @property
    def size(self) -> int:
        return self.state.size

    def resize(self, new_size: int) -> None:
        """Change the pool capacity to ``new_size`` bytes."""
        if self.state.size == new_size:
            return
        if new_size % MINIMUM_SECTOR_SIZE != 0:
            raise NoMultipleOfSectorSizeError()
        self.vg.runner.call(
            "lvresize", "-f", "-L", f"{new_size}b", self.state.full_name
        )
        # lvm may round the size, so read it back.
        volume = self.vg.find_volume(self.name)
        self.state.size = volume.size

    def list_volumes(self) -> dict[str, "LogicalVolume"]:
        """Return the thin volumes that live in this pool, by name."""
        return {
            name: volume
            for name, volume in self.vg.list_volumes().items()
            if volume.pool_name == self.name
        }

    def find_volume(self, name: str) -> "LogicalVolume":
        """Return the thin volume called ``name`` in this pool."""
        candidate = self.vg.find_volume(name)
        if candidate.pool_name != self.name:
            raise NotFoundError()
        return candidate

    def create_volume(
        self,
        name: str,
        size: int,
        tags: Optional[Sequence[str]] = None,
        stripe: int = 0,
        stripe_size: str = "",
        lvcreate_options: Optional[Sequence[str]] = None,
    ) -> None:
        """Create a thin volume with a virtual size of ``size`` bytes."""
        args = [
            "lvcreate", "-T", self.full_name, "-n", name,
            "-V", f"{size}b", "-W", "y", "-y",
        ]
        args += _tag_args(tags)
        args += _stripe_args(stripe, stripe_size)
        args += list(lvcreate_options or ())
        self.vg.runner.call(*args)

    def free(self) -> ThinPoolUsage:
        """Return usage percentages, total virtual size and pool size."""
        volumes = self.list_volumes()
        return ThinPoolUsage(
            data_percent=self.state.data_percent,
            metadata_percent=self.state.metadata_percent,
            virtual_bytes=sum(volume.size for volume in volumes.values()),
            size_bytes=self.state.size,
        )


class LogicalVolume:
    """A logical volume inside a volume group."""

    def __init__(
        self,
        name: str,
        path: str,
        vg: VolumeGroup,
        size: int,
        origin_name: Optional[str] = None,
        pool_name: Optional[str] = None,
        major: int = 0,
        minor: int = 0,
        tags: Optional[list[str]] = None,
    ) -> None:
        self.name = name
        self.full_name = _full_name(name, vg)
        self.path = path
        self.vg = vg
        self.size = size
        self.origin_name = origin_name
        self.pool_name = pool_name
        self.major = major
        self.minor = minor
        self.tags = tags if tags is not None else []

    def __repr__(self) -> str:
        return f"LogicalVolume(full_name={self.full_name!r}, size={self.size})"

    def is_snapshot(self) -> bool:
        return self.origin_name is not None

    def origin(self) -> Optional["LogicalVolume"]:
        """Return the origin volume of a snapshot, or None."""
        if self.origin_name is None:
            return None
        return self.vg.find_volume(self.origin_name)

    def is_thin(self) -> bool:
        return self.pool_name is not None

    def pool(self) -> Optional[ThinPool]:
        """Return the thin pool of a thin volume, or None."""
        if self.pool_name is None:
            return None
        return self.vg.find_pool(self.pool_name)

    def thin_snapshot(self, name: str, tags: Optional[Sequence[str]] = None) -> None:
        """Take a thin snapshot of this thin volume."""
        if not self.is_thin():
            raise ValueError(
                f"cannot take snapshot of non-thin volume: {self.full_name}"
            )
        args = ["lvcreate", "-s", "-k", "n", "-n", name, self.full_name]
        args += _tag_args(tags)
        self.vg.runner.call(*args)

    def activate(self, access: str) -> None:
        """Activate the volume read-only ("ro") or read-write ("rw")."""
        if access == "ro":
            args = ["lvchange", "-p", "r", self.path]
        elif access == "rw":
            args = ["lvchange", "-k", "n", "-a", "y", self.path]
        else:
            raise ValueError(
                f"unknown access: {access} for LogicalVolume {self.full_name}"
            )
        self.vg.runner.call(*args)

    def resize(self, new_size: int) -> None:
        """Grow the volume to ``new_size`` bytes."""
        if self.size > new_size:
            raise ValueError("volume cannot be shrunk")
        if self.size == new_size:
            return
        self.vg.runner.call("lvresize", "-L", f"{new_size}b", self.full_name)
        # lvm may round the size, so read it back.
        self.size = self.vg.find_volume(self.name).size

    def rename(self, name: str) -> None:
        """Rename the volume and update its name, full name and path."""
        self.vg.runner.call("lvrename", self.vg.name, self.name, name)
        self.full_name = _full_name(name, self.vg)
        self.name = name
        self.path = posixpath.join(posixpath.dirname(self.path), name)