"""Parsing of lvm JSON reports into volume group and logical volume records."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import IO, Any, Mapping

from lvmdkit.errors import LVMError, NotFoundError, is_lvm_not_found

logger = logging.getLogger(__name__)

LV_FIELDS = (
    "lv_uuid,lv_name,lv_full_name,lv_path,lv_size,"
    "lv_kernel_major,lv_kernel_minor,origin,origin_size,pool_lv,lv_tags,"
    "lv_attr,vg_name,data_percent,metadata_percent,pool_lv"
)
VG_FIELDS = "vg_uuid,vg_name,vg_size,vg_free"
FULL_REPORT_VG_FIELDS = "vg_name,vg_uuid,vg_size,vg_free"

_UINT = re.compile(r"[0-9]+")
_UINT32_MAX = (1 << 32) - 1


def _field(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {value!r}")
    return value


def _parse_uint(text: str, bits: int = 64) -> int:
    if not _UINT.fullmatch(text):
        raise ValueError(f"invalid unsigned integer: {text!r}")
    value = int(text)
    if value >= 1 << bits:
        raise ValueError(f"value out of range: {text!r}")
    return value


def _device_number(text: str) -> int:
    # Inactive volumes report -1; anything unparsable counts as 0.
    if not _UINT.fullmatch(text):
        return 0
    return min(int(text), _UINT32_MAX)


def _require_object(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be a JSON object")
    return data


def _sections(document: Any, key: str) -> list[Mapping[str, Any]]:
    """Return the records under ``key`` from every report section."""
    reports = _require_object(document, "report document").get("report") or []
    if not isinstance(reports, list):
        raise ValueError("'report' must be a list")
    records: list[Mapping[str, Any]] = []
    for report in reports:
        entries = _require_object(report, "report section").get(key) or []
        if not isinstance(entries, list):
            raise ValueError(f"{key!r} must be a list")
        records.extend(entries)
    return records


@dataclass
class LVRecord:
    """One logical volume as reported by lvm."""

    name: str = ""
    full_name: str = ""
    uuid: str = ""
    path: str = ""
    major: int = 0
    minor: int = 0
    origin: str = ""
    origin_size: int = 0
    pool_lv: str = ""
    tags: list[str] = field(default_factory=list)
    attr: str = ""
    vg_name: str = ""
    size: int = 0
    data_percent: float = 0.0
    metadata_percent: float = 0.0

    def is_thin_pool(self) -> bool:
        return self.attr.startswith("t")


@dataclass
class VGRecord:
    """One volume group as reported by lvm."""

    name: str = ""
    uuid: str = ""
    size: int = 0
    free: int = 0


def parse_lv(data: Mapping[str, Any]) -> LVRecord:
    """Build an LVRecord from one entry of an lvm report."""
    data = _require_object(data, "logical volume")
    origin_size = _field(data, "origin_size")
    size = _field(data, "lv_size")
    data_percent = _field(data, "data_percent")
    metadata_percent = _field(data, "metadata_percent")
    return LVRecord(
        name=_field(data, "lv_name"),
        full_name=_field(data, "lv_full_name"),
        uuid=_field(data, "lv_uuid"),
        path=_field(data, "lv_path"),
        major=_device_number(_field(data, "lv_kernel_major")),
        minor=_device_number(_field(data, "lv_kernel_minor")),
        origin=_field(data, "origin"),
        origin_size=_parse_uint(origin_size) if origin_size else 0,
        pool_lv=_field(data, "pool_lv"),
        tags=_field(data, "lv_tags").split(","),
        attr=_field(data, "lv_attr"),
        vg_name=_field(data, "vg_name"),
        size=_parse_uint(size) if size else 0,
        data_percent=float(data_percent) if data_percent else 0.0,
        metadata_percent=float(metadata_percent) if metadata_percent else 0.0,
    )


def parse_vg(data: Mapping[str, Any]) -> VGRecord:
    """Build a VGRecord from one entry of an lvm report."""
    data = _require_object(data, "volume group")
    return VGRecord(
        name=_field(data, "vg_name"),
        uuid=_field(data, "vg_uuid"),
        size=_parse_uint(_field(data, "vg_size")),
        free=_parse_uint(_field(data, "vg_free")),
    )


def parse_full_report(stream: IO[str]) -> tuple[list[VGRecord], list[LVRecord]]:
    """Parse the JSON output of ``lvm fullreport`` into VG and LV records."""
    document = json.load(stream)
    vgs = [parse_vg(entry) for entry in _sections(document, "vg")]
    lvs = [parse_lv(entry) for entry in _sections(document, "lv")]
    return vgs, lvs


def _call_report(runner: Any, *args: str) -> Any:
    try:
        return runner.call_json(*args)
    except Exception as err:
        if is_lvm_not_found(err):
            raise NotFoundError(f"not found: {err}") from err
        raise


def get_lv_report(runner: Any, name: str) -> dict[str, LVRecord]:
    """Report the logical volumes of ``name`` (a VG, or ``vg/lv``) by name."""
    document = _call_report(
        runner,
        "lvs", name, "-o", LV_FIELDS,
        "--units", "b", "--nosuffix", "--reportformat", "json",
    )
    reports = _require_object(document, "report document").get("report") or []
    if not reports:
        raise NotFoundError()
    entries = _require_object(reports[0], "report section").get("lv") or []
    if not entries:
        raise NotFoundError()
    records = (parse_lv(entry) for entry in entries)
    return {record.name: record for record in records}


def get_vg_report(runner: Any, name: str) -> VGRecord:
    """Report the volume group called ``name``."""
    document = _call_report(
        runner,
        "vgs", name, "-o", VG_FIELDS,
        "--units", "b", "--nosuffix", "--reportformat", "json",
    )
    for entry in _sections(document, "vg"):
        record = parse_vg(entry)
        if record.name == name:
            return record
    raise NotFoundError()


def get_lvm_state(runner: Any) -> tuple[list[VGRecord], list[LVRecord]]:
    """Fetch every volume group and logical volume with one lvm call."""
    args = (
        "fullreport",
        "--reportformat", "json",
        "--units", "b", "--nosuffix",
        "--configreport", "vg", "-o", FULL_REPORT_VG_FIELDS,
        "--configreport", "lv", "-o", LV_FIELDS,
        # fullreport cannot omit a section, so every field of it is dropped.
        "--configreport", "pv", "-o,",
        "--configreport", "pvseg", "-o,",
        "--configreport", "seg", "-o,",
    )
    result = None
    try:
        with runner.stream(*args) as output:
            result = parse_full_report(output)
    except LVMError as err:
        if result is None:
            raise
        logger.error("failed to run command: %s", err)
    return result