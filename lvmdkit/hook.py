"""Admission hooks that prepare pods and claims for capacity-aware scheduling.

Objects are handled in their JSON form: plain dicts as the API server
sends them. Lookups go through a *getter*, a callable
``getter(kind, name, namespace)`` that returns the object as a dict or
raises :class:`ObjectNotFoundError`.
"""

from __future__ import annotations

import copy
import logging
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Getter = Callable[[str, str, str], dict]

_NO_REQUEST = "no request for TopoLVM"

_BINARY_SUFFIXES = {
    "Ki": 1 << 10,
    "Mi": 1 << 20,
    "Gi": 1 << 30,
    "Ti": 1 << 40,
    "Pi": 1 << 50,
    "Ei": 1 << 60,
}
_DECIMAL_SUFFIXES = {
    "": Decimal(1),
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}
_QUANTITY = re.compile(r"([+-]?(?:\d+(?:\.\d*)?|\.\d+))(.*)")
_EXPONENT = re.compile(r"[eE]([+-]?\d+)")


@dataclass(frozen=True)
class HookSettings:
    """Names and defaults the hooks work with."""

    plugin_name: str = "topolvm.io"
    capacity_resource: str = "topolvm.io/capacity"
    capacity_key_prefix: str = "capacity.topolvm.io/"
    device_class_key: str = "topolvm.io/device-class"
    default_device_class_annotation_name: str = "00default"
    pvc_finalizer: str = "topolvm.io/pvc"
    default_size: int = 1 << 30


class ObjectNotFoundError(LookupError):
    """The requested object does not exist."""


@dataclass
class AdmissionResponse:
    """The verdict of an admission hook, with a JSON patch when it mutates."""

    allowed: bool
    code: int = 200
    message: str = ""
    patches: list[dict] = field(default_factory=list)

    @classmethod
    def allow(cls, message: str) -> "AdmissionResponse":
        return cls(allowed=True, message=message)

    @classmethod
    def deny(cls, message: str) -> "AdmissionResponse":
        return cls(allowed=False, code=403, message=message)

    @classmethod
    def errored(cls, code: int, err: BaseException) -> "AdmissionResponse":
        return cls(allowed=False, code=code, message=str(err))

    @classmethod
    def patch(cls, original: Any, modified: Any) -> "AdmissionResponse":
        return cls(allowed=True, patches=json_patch(original, modified))


def _escape(token: Any) -> str:
    return str(token).replace("~", "~0").replace("/", "~1")


def _diff(original: Any, modified: Any, path: str, out: list[dict]) -> None:
    if isinstance(original, dict) and isinstance(modified, dict):
        for key in original:
            if key not in modified:
                out.append({"op": "remove", "path": f"{path}/{_escape(key)}"})
        for key, value in modified.items():
            child = f"{path}/{_escape(key)}"
            if key not in original:
                out.append({"op": "add", "path": child, "value": copy.deepcopy(value)})
            else:
                _diff(original[key], value, child, out)
        return
    if (
        isinstance(original, list)
        and isinstance(modified, list)
        and len(original) == len(modified)
    ):
        for index, (old, new) in enumerate(zip(original, modified)):
            _diff(old, new, f"{path}/{index}", out)
        return
    if original != modified or type(original) is not type(modified):
        out.append({"op": "replace", "path": path, "value": copy.deepcopy(modified)})


def json_patch(original: Any, modified: Any) -> list[dict]:
    """Return the JSON patch operations that turn ``original`` into ``modified``."""
    operations: list[dict] = []
    _diff(original, modified, "", operations)
    return operations


def _quantity_value(quantity: Any) -> int:
    """Return a resource quantity as an integer, rounding up."""
    if isinstance(quantity, bool):
        raise ValueError(f"invalid quantity: {quantity!r}")
    if isinstance(quantity, int):
        return quantity
    if isinstance(quantity, float):
        return math.ceil(quantity)
    text = str(quantity).strip()
    match = _QUANTITY.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid quantity: {quantity!r}")
    try:
        number = Decimal(match.group(1))
    except InvalidOperation as err:
        raise ValueError(f"invalid quantity: {quantity!r}") from err
    suffix = match.group(2)
    if suffix in _BINARY_SUFFIXES:
        value = number * _BINARY_SUFFIXES[suffix]
    elif suffix in _DECIMAL_SUFFIXES:
        value = number * _DECIMAL_SUFFIXES[suffix]
    else:
        exponent = _EXPONENT.fullmatch(suffix)
        if exponent is None:
            raise ValueError(f"invalid quantity: {quantity!r}")
        value = number.scaleb(int(exponent.group(1)))
    return int(value.to_integral_value(rounding="ROUND_CEILING"))


def _decode(request: dict) -> dict:
    obj = request.get("object") if isinstance(request, dict) else None
    if not isinstance(obj, dict):
        raise ValueError("there is no content to decode")
    return copy.deepcopy(obj)


def _requested_size(spec: dict, settings: HookSettings) -> int:
    requested = settings.default_size
    requests = (spec.get("resources") or {}).get("requests") or {}
    if "storage" in requests:
        # The default only applies when no size is given.
        value = _quantity_value(requests["storage"])
        if value != 0:
            requested = value
    return requested


def _device_class(sc: dict, settings: HookSettings) -> str:
    parameters = sc.get("parameters") or {}
    return parameters.get(
        settings.device_class_key, settings.default_device_class_annotation_name
    )


class StorageClassCache:
    """Looks up storage classes, remembering which belong to the plugin."""

    def __init__(self, getter: Getter, settings: Optional[HookSettings] = None) -> None:
        self.getter = getter
        self.settings = settings or HookSettings()
        self._cache: dict[str, Optional[dict]] = {}

    def get(self, name: str) -> Optional[dict]:
        """Return the storage class if it exists and uses the plugin, else None."""
        if name in self._cache:
            return self._cache[name]
        try:
            sc = self.getter("StorageClass", name, "")
        except ObjectNotFoundError:
            self._cache[name] = None
            return None
        if sc.get("provisioner") != self.settings.plugin_name:
            self._cache[name] = None
            return None
        self._cache[name] = sc
        return sc


class PodMutator:
    """Adds capacity requests and annotations to pods that use plugin volumes."""

    def __init__(self, getter: Getter, settings: Optional[HookSettings] = None) -> None:
        self.getter = getter
        self.settings = settings or HookSettings()

    def handle(self, request: dict) -> AdmissionResponse:
        """Decide on a pod creation request."""
        try:
            pod = _decode(request)
        except ValueError as err:
            return AdmissionResponse.errored(400, err)
        spec = pod.get("spec") or {}
        containers = spec.get("containers") or []
        if not containers:
            return AdmissionResponse.deny("pod has no containers")
        if not spec.get("volumes"):
            return AdmissionResponse.allow("no volumes")

        metadata = pod.setdefault("metadata", {})
        # Pods made from templates may lack a namespace; take the request's.
        if not metadata.get("namespace"):
            logger.info("infer pod namespace from req: %s", request.get("namespace", ""))
            metadata["namespace"] = request.get("namespace", "")

        try:
            capacities = self._volumes_capacity(pod)
        except Exception as err:
            logger.error("volumesCapacity failed: %s", err)
            return AdmissionResponse.errored(500, err)
        if not capacities:
            return AdmissionResponse.allow(_NO_REQUEST)

        resources = containers[0].setdefault("resources", {})
        resource = self.settings.capacity_resource
        (resources.get("requests") or resources.setdefault("requests", {}))[resource] = "1"
        if resources.get("requests") is None:
            resources["requests"] = {resource: "1"}
        limits = resources.get("limits")
        if limits is None:
            limits = resources["limits"] = {}
        limits[resource] = "1"

        annotations = metadata.get("annotations")
        if annotations is None:
            annotations = metadata["annotations"] = {}
        for dc, capacity in capacities.items():
            annotations[self.settings.capacity_key_prefix + dc] = str(capacity)

        return AdmissionResponse.patch(request["object"], pod)

    def _volumes_capacity(self, pod: dict) -> dict[str, int]:
        cache = StorageClassCache(self.getter, self.settings)
        capacities: dict[str, int] = {}
        for volume in pod["spec"]["volumes"]:
            if volume.get("persistentVolumeClaim") is not None:
                result = self._pvc_capacity(pod, volume, cache)
                if result is _BOUND:
                    # A bound volume already fixes the node; nothing to schedule.
                    return {}
            elif (volume.get("ephemeral") or {}).get("volumeClaimTemplate") is not None:
                result = self._ephemeral_capacity(volume, cache)
            else:
                continue
            if result is None:
                continue
            dc, requested = result
            if not dc:
                continue
            capacities[dc] = capacities.get(dc, 0) + requested
        return capacities

    def _pvc_capacity(self, pod: dict, volume: dict, cache: StorageClassCache) -> Any:
        claim_name = volume["persistentVolumeClaim"].get("claimName", "")
        namespace = pod["metadata"].get("namespace", "")
        try:
            pvc = self.getter("PersistentVolumeClaim", claim_name, namespace)
        except ObjectNotFoundError:
            # Pods may be created before their claims.
            return None
        except Exception as err:
            logger.error(
                "failed to get pvc: pod=%s namespace=%s pvc=%s: %s",
                pod["metadata"].get("name", ""), namespace, claim_name, err,
            )
            raise
        spec = pvc.get("spec") or {}
        sc_name = spec.get("storageClassName")
        if not sc_name:
            return None
        sc = cache.get(sc_name)
        if sc is None:
            return None
        if (pvc.get("status") or {}).get("phase", "") != "Pending":
            return _BOUND
        return _device_class(sc, self.settings), _requested_size(spec, self.settings)

    def _ephemeral_capacity(self, volume: dict, cache: StorageClassCache) -> Any:
        spec = volume["ephemeral"]["volumeClaimTemplate"].get("spec") or {}
        sc_name = spec.get("storageClassName")
        if sc_name is None:
            return None
        sc = cache.get(sc_name)
        if sc is None:
            return None
        return _device_class(sc, self.settings), _requested_size(spec, self.settings)


_BOUND = object()


class PVCMutator:
    """Adds the plugin's finalizer to claims that use a plugin storage class."""

    def __init__(self, getter: Getter, settings: Optional[HookSettings] = None) -> None:
        self.getter = getter
        self.settings = settings or HookSettings()

    def handle(self, request: dict) -> AdmissionResponse:
        """Decide on a claim creation request."""
        try:
            pvc = _decode(request)
        except ValueError as err:
            return AdmissionResponse.errored(400, err)

        sc_name = (pvc.get("spec") or {}).get("storageClassName")
        # An empty name binds to a volume without a storage class.
        if not sc_name:
            return AdmissionResponse.allow(_NO_REQUEST)

        try:
            sc = self.getter("StorageClass", sc_name, "")
        except ObjectNotFoundError:
            return AdmissionResponse.allow(_NO_REQUEST)
        except Exception as err:
            return AdmissionResponse.errored(500, err)

        if sc.get("provisioner") != self.settings.plugin_name:
            return AdmissionResponse.allow(_NO_REQUEST)

        metadata = pvc.setdefault("metadata", {})
        finalizers = metadata.get("finalizers") or []
        if self.settings.pvc_finalizer in finalizers:
            return AdmissionResponse.allow("already added finalizer")
        metadata["finalizers"] = [*finalizers, self.settings.pvc_finalizer]

        return AdmissionResponse.patch(request["object"], pvc)