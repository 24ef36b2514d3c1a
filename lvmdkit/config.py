"""Device-class and lvcreate-option-class configuration and lookup."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Union

DEFAULT_SPARE_GB = 10
DEFAULT_DEVICE_CLASS_NAME = ""
MAX_DEVICE_CLASS_NAME_LENGTH = 63

_QUALIFIED_NAME = re.compile(r"([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]")
_STRIPE_SIZE = re.compile(r"([0-9]*)(k|m|g|t|p|e|b|s)?", re.IGNORECASE)


class DeviceType(str, Enum):
    """Where volumes of a device-class are carved from."""

    THICK = "thick"
    THIN = "thin"


@dataclass
class ThinPoolConfig:
    """The thin pool behind a thin device-class."""

    name: str = ""
    overprovision_ratio: float = 0.0


@dataclass
class DeviceClass:
    """A named target for logical volumes: a volume group or a thin pool."""

    name: str = ""
    volume_group: str = ""
    default: bool = False
    spare_gb: Optional[int] = None
    stripe: Optional[int] = None
    stripe_size: str = ""
    lvcreate_options: Optional[list[str]] = None
    type: Union[DeviceType, str] = ""
    thin_pool_config: Optional[ThinPoolConfig] = None


@dataclass
class LvcreateOptionClass:
    """A named set of extra lvcreate arguments."""

    name: str = ""
    options: list[str] = field(default_factory=list)


class DeviceClassNotFoundError(LookupError):
    """No device-class matches the requested name, VG or thin pool."""

    def __init__(self, message: str = "device-class not found") -> None:
        super().__init__(message)


def get_spare(dc: DeviceClass) -> int:
    """Return the spare space of the device-class in bytes."""
    spare_gb = DEFAULT_SPARE_GB if dc.spare_gb is None else dc.spare_gb
    return spare_gb << 30


def _validate_one(
    dc: DeviceClass, dc_names: set[str], vg_names: set[str]
) -> None:
    name_length = len(dc.name.encode())
    if name_length == 0:
        raise ValueError("device-class name should not be empty")
    if name_length > MAX_DEVICE_CLASS_NAME_LENGTH:
        raise ValueError(f"device-class name is too long: {dc.name}")
    if not _QUALIFIED_NAME.fullmatch(dc.name):
        raise ValueError(
            "device-class name should consist of alphanumeric characters, "
            "'-', '_' or '.', and should start and end with an alphanumeric "
            f"character: {dc.name}"
        )
    if not dc.volume_group:
        raise ValueError(f"volume group name should not be empty: {dc.name}")
    if dc.name in dc_names:
        raise ValueError(f"duplicate device-class name: {dc.name}")

    if dc.type not in ("", DeviceType.THICK, DeviceType.THIN):
        thick, thin = DeviceType.THICK.value, DeviceType.THIN.value
        raise ValueError(
            f"target 'type' of device-class can be one of '{thick}' or "
            f"'{thin}' or empty to default to '{thick}'"
        )

    target = dc.volume_group
    # Thin pool settings only matter for thin device-classes.
    if dc.type == DeviceType.THIN:
        pool = dc.thin_pool_config
        if pool is None:
            raise ValueError(
                f"device class type is thin but thinpool config is empty: {dc.name}"
            )
        if not pool.name:
            raise ValueError(f"thinpool name should not be empty: {dc.name}")
        if pool.overprovision_ratio < 1.0:
            raise ValueError(
                f"overprovision ratio for thin pool {pool.name} in device "
                f"class {dc.name} should be greater than 1.0"
            )
        target = f"{target}/{pool.name}"

    if target in vg_names:
        raise ValueError(
            f"duplicate volumegroup/thinpool name: {dc.name}, {target}"
        )
    dc_names.add(dc.name)
    vg_names.add(target)

    if dc.stripe_size and not _STRIPE_SIZE.fullmatch(dc.stripe_size):
        raise ValueError(f'stripe-size format is "Size[k|UNIT]": {dc.name}')


def validate_device_classes(device_classes: Iterable[DeviceClass]) -> None:
    """Raise ValueError if the device-classes are not a usable configuration."""
    device_classes = list(device_classes)
    if not device_classes:
        raise ValueError("should have at least one device-class")
    dc_names: set[str] = set()
    vg_names: set[str] = set()
    for dc in device_classes:
        _validate_one(dc, dc_names, vg_names)
    if sum(1 for dc in device_classes if dc.default) > 1:
        raise ValueError("should not have multiple default device-class")


class DeviceClassManager:
    """Maps between device-classes, volume groups and thin pools."""

    def __init__(self, device_classes: Iterable[DeviceClass]) -> None:
        self.default_device_class: Optional[DeviceClass] = None
        self.by_name: dict[str, DeviceClass] = {}
        self.by_vg_name: dict[str, DeviceClass] = {}
        self.by_thin_pool_name: dict[str, DeviceClass] = {}
        for dc in device_classes:
            if dc.default:
                self.default_device_class = dc
            self.by_name[dc.name] = dc
            if dc.type in ("", DeviceType.THICK):
                dc.type = DeviceType.THICK
                self.by_vg_name[dc.volume_group] = dc
            elif dc.type == DeviceType.THIN:
                # Pool names are only unique within their volume group.
                key = f"{dc.volume_group}/{dc.thin_pool_config.name}"
                self.by_thin_pool_name[key] = dc

    def device_class(self, name: str) -> DeviceClass:
        """Return the device-class called ``name``; the empty name means the default."""
        if name == DEFAULT_DEVICE_CLASS_NAME and self.default_device_class is not None:
            return self.default_device_class
        try:
            return self.by_name[name]
        except KeyError:
            raise DeviceClassNotFoundError() from None

    def find_by_vg_name(self, vg_name: str) -> DeviceClass:
        """Return the thick device-class on volume group ``vg_name``."""
        try:
            return self.by_vg_name[vg_name]
        except KeyError:
            raise DeviceClassNotFoundError() from None

    def find_by_thin_pool_name(self, vg_name: str, pool_name: str) -> DeviceClass:
        """Return the thin device-class on ``pool_name`` in ``vg_name``."""
        try:
            return self.by_thin_pool_name[f"{vg_name}/{pool_name}"]
        except KeyError:
            raise DeviceClassNotFoundError() from None


class LvcreateOptionClassManager:
    """Looks up lvcreate-option-classes by name."""

    def __init__(
        self, option_classes: Optional[Iterable[LvcreateOptionClass]] = None
    ) -> None:
        self.by_name: dict[str, LvcreateOptionClass] = {
            oc.name: oc for oc in option_classes or ()
        }

    def option_class(self, name: str) -> Optional[LvcreateOptionClass]:
        """Return the option class called ``name``, or None."""
        return self.by_name.get(name)