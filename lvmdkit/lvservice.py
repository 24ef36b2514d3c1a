"""Logical volume service: create, remove, resize and snapshot volumes."""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Optional

from lvmdkit.config import (
    DeviceClass,
    DeviceClassManager,
    DeviceClassNotFoundError,
    DeviceType,
    LvcreateOptionClassManager,
)
from lvmdkit.errors import NotFoundError
from lvmdkit.rpc import (
    CreateLVRequest,
    CreateLVResponse,
    CreateLVSnapshotRequest,
    CreateLVSnapshotResponse,
    LogicalVolumeInfo,
    RemoveLVRequest,
    ResizeLVRequest,
    RpcError,
    StatusCode,
    requested_bytes,
)
from lvmdkit.volumes import LogicalVolume, ThinPool, VolumeGroup, find_volume_group

logger = logging.getLogger(__name__)


def _type_name(device_type: Any) -> str:
    if isinstance(device_type, DeviceType):
        return device_type.value
    return str(device_type)


def _volume_info(lv: LogicalVolume) -> LogicalVolumeInfo:
    return LogicalVolumeInfo(
        name=lv.name,
        # The gigabyte field is kept for older clients.
        size_gb=lv.size >> 30,
        size_bytes=lv.size,
        dev_major=lv.major,
        dev_minor=lv.minor,
    )


def _internal(err: BaseException) -> RpcError:
    return RpcError(StatusCode.INTERNAL, str(err))


class LVService:
    """Serves logical volume requests against the configured device-classes."""

    def __init__(
        self,
        dc_manager: DeviceClassManager,
        oc_manager: LvcreateOptionClassManager,
        runner: Any,
        notify: Optional[Callable[[], None]] = None,
    ) -> None:
        self.dc_manager = dc_manager
        self.oc_manager = oc_manager
        self.runner = runner
        self._notify = notify

    def _notify_watchers(self) -> None:
        if self._notify is not None:
            self._notify()

    def _device_class(self, name: str) -> DeviceClass:
        try:
            return self.dc_manager.device_class(name)
        except DeviceClassNotFoundError as err:
            raise RpcError(StatusCode.NOT_FOUND, f"{err}: {name}") from err

    def _available(
        self, dc: DeviceClass, vg: VolumeGroup
    ) -> tuple[int, Optional[ThinPool]]:
        """Return the bytes free for new data in the device-class, and its pool."""
        if dc.type == DeviceType.THICK:
            return vg.free, None
        if dc.type == DeviceType.THIN:
            try:
                pool = vg.find_pool(dc.thin_pool_config.name)
            except Exception as err:
                logger.error("failed to get thinpool: %s", err)
                raise _internal(err) from err
            try:
                usage = pool.free()
            except Exception as err:
                logger.error("failed to get free bytes: %s", err)
                raise _internal(err) from err
            ratio = dc.thin_pool_config.overprovision_ratio
            free = math.floor(ratio * usage.size_bytes) - usage.virtual_bytes
            return free, pool
        raise RpcError(
            StatusCode.INTERNAL,
            f"unsupported device class target: {_type_name(dc.type)}",
        )

    def create_lv(self, request: CreateLVRequest) -> CreateLVResponse:
        """Create a logical volume in the requested device-class."""
        dc = self._device_class(request.device_class)
        vg = find_volume_group(self.runner, dc.volume_group)
        option_class = self.oc_manager.option_class(request.lvcreate_option_class)
        requested = requested_bytes(request.size_bytes, request.size_gb)

        free, pool = self._available(dc, vg)
        if free < requested:
            logger.error(
                "not enough space left on VG: free=%d requested=%d", free, requested
            )
            raise RpcError(
                StatusCode.RESOURCE_EXHAUSTED,
                f"no enough space left on VG: free={free}, requested={requested}",
            )

        stripe = 0
        stripe_size = ""
        lvcreate_options: list[str] = []
        if option_class is not None:
            lvcreate_options = list(option_class.options)
        elif request.lvcreate_option_class:
            raise RpcError(
                StatusCode.INTERNAL,
                "unsupported lvcreate-option-class target: "
                f"{request.lvcreate_option_class}",
            )
        else:
            stripe_size = dc.stripe_size
            if dc.stripe is not None:
                stripe = dc.stripe
            if dc.lvcreate_options is not None:
                lvcreate_options = list(dc.lvcreate_options)

        target: Any = vg if dc.type == DeviceType.THICK else pool
        try:
            target.create_volume(
                request.name,
                requested,
                request.tags,
                stripe,
                stripe_size,
                lvcreate_options,
            )
        except Exception as err:
            logger.error(
                "failed to create volume %s (requested=%d tags=%s): %s",
                request.name, requested, request.tags, err,
            )
            raise _internal(err) from err

        try:
            lv = vg.find_volume(request.name)
        except Exception as err:
            logger.error("failed to find volume %s: %s", request.name, err)
            raise _internal(err) from err

        self._notify_watchers()
        logger.info("created a new LV %s: size=%d", request.name, requested)
        return CreateLVResponse(volume=_volume_info(lv))

    def remove_lv(self, request: RemoveLVRequest) -> None:
        """Remove a logical volume from the requested device-class."""
        dc = self._device_class(request.device_class)
        try:
            vg = find_volume_group(self.runner, dc.volume_group)
        except NotFoundError as err:
            raise RpcError(
                StatusCode.NOT_FOUND, f"{err}: {request.device_class}"
            ) from err
        except Exception as err:
            logger.error("failed to get volume group %s: %s", dc.volume_group, err)
            raise

        try:
            vg.remove_volume(request.name)
        except NotFoundError as err:
            raise RpcError(
                StatusCode.NOT_FOUND, f"{err}: {request.device_class}"
            ) from err
        except Exception as err:
            logger.error("failed to remove volume %s: %s", request.name, err)
            raise

        self._notify_watchers()
        logger.info("removed a LV %s", request.name)

    def create_lv_snapshot(
        self, request: CreateLVSnapshotRequest
    ) -> CreateLVSnapshotResponse:
        """Take a thin snapshot of a thin volume, resized and activated as asked."""
        dc = self._device_class(request.device_class)
        if dc.type == DeviceType.THICK:
            raise RpcError(
                StatusCode.UNIMPLEMENTED,
                "device class is not thin. Thick snapshots are not implemented yet",
            )
        if dc.type != DeviceType.THIN:
            raise RpcError(
                StatusCode.INVALID_ARGUMENT,
                f"invalid device class type {_type_name(dc.type)}",
            )

        vg = find_volume_group(self.runner, dc.volume_group)

        source_name = request.source_volume
        try:
            source = vg.find_volume(source_name)
        except NotFoundError as err:
            logger.error("source logical volume %s is not found", source_name)
            raise RpcError(
                StatusCode.NOT_FOUND,
                f"source logical volume {source_name} is not found",
            ) from err
        except Exception as err:
            logger.error("failed to find source volume %s: %s", source_name, err)
            raise _internal(err) from err

        if not source.is_thin():
            raise RpcError(
                StatusCode.UNIMPLEMENTED,
                "snapshot can be created for only thin volumes",
            )

        # A thin snapshot starts at the source's size and is grown afterwards.
        size_on_creation = source.size
        desired = requested_bytes(request.size_bytes, request.size_gb)
        if desired == 0:
            desired = size_on_creation
        if size_on_creation > desired:
            raise RpcError(
                StatusCode.OUT_OF_RANGE,
                f"requested size {desired} is smaller than source logical "
                f"volume: {size_on_creation}",
            )

        logger.info(
            "lvservice req: sizeOnCreation=%d desiredSize=%d sourceVol=%s "
            "snapType=thin-snapshot accessType=%s",
            size_on_creation, desired, source_name, request.access_type,
        )

        try:
            source.thin_snapshot(request.name, request.tags)
        except Exception as err:
            logger.error("failed to create snapshot volume: %s", err)
            raise _internal(err) from err

        try:
            snapshot = vg.find_volume(request.name)
        except Exception as err:
            logger.error("failed to get snapshot after creation: %s", err)
            raise _internal(err) from err

        try:
            snapshot.resize(desired)
        except Exception as err:
            logger.error("failed to resize snapshot volume: %s", err)
            raise _internal(err) from err

        try:
            snapshot.activate(request.access_type)
        except Exception as err:
            logger.error("failed to activate snapshot volume: %s", err)
            try:
                vg.remove_volume(request.name)
            except Exception as remove_err:
                logger.error(
                    "failed to delete snapshot after activation failed: %s",
                    remove_err,
                )
            else:
                logger.info("deleted a snapshot")
            raise _internal(err) from err

        self._notify_watchers()
        logger.info(
            "created a new snapshot LV %s: size=%d accessType=%s sourceID=%s",
            request.name, desired, request.access_type, source_name,
        )
        return CreateLVSnapshotResponse(snapshot=_volume_info(snapshot))

    def resize_lv(self, request: ResizeLVRequest) -> None:
        """Grow a logical volume to the requested size."""
        dc = self._device_class(request.device_class)
        vg = find_volume_group(self.runner, dc.volume_group)
        try:
            lv = vg.find_volume(request.name)
        except NotFoundError as err:
            logger.error("logical volume %s is not found", request.name)
            raise RpcError(
                StatusCode.NOT_FOUND,
                f"logical volume {request.name} is not found",
            ) from err
        except Exception as err:
            logger.error("failed to find volume %s: %s", request.name, err)
            raise _internal(err) from err

        requested = requested_bytes(request.size_bytes, request.size_gb)
        current = lv.size
        if requested < current:
            logger.error(
                "shrinking volume size is not allowed: requested=%d current=%d",
                requested, current,
            )
            raise RpcError(
                StatusCode.OUT_OF_RANGE, "shrinking volume size is not allowed"
            )

        free, _ = self._available(dc, vg)
        logger.info(
            "lvservice request - ResizeLV: requested=%d current=%d free=%d",
            requested, current, free,
        )
        if free < requested - current:
            logger.error(
                "no enough space left on VG: requested=%d current=%d free=%d",
                requested, current, free,
            )
            raise RpcError(
                StatusCode.RESOURCE_EXHAUSTED,
                "no enough space left on VG: "
                f"free={free}, requested={requested - current}",
            )

        try:
            lv.resize(requested)
        except Exception as err:
            logger.error("failed to resize LV %s: %s", request.name, err)
            raise _internal(err) from err

        self._notify_watchers()
        logger.info("resized a LV %s: size=%d", request.name, requested)