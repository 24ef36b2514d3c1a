# lvmdkit

A library for managing LVM storage on a node. It drives the `lvm` command,
models volume groups, thin pools and logical volumes, maps named device
classes onto them, and serves logical-volume requests in the shape a storage
driver needs. It also contains admission mutators that prepare pods and
claims for capacity-aware scheduling.

The package has no third-party dependencies.

## Modules

- `lvmdkit.runner`: `LVMRunner` runs `lvm` subcommands in the namespaces
  of PID 1 through `nsenter`, with `LC_ALL=C`. `call()` logs the output line
  by line. `call_json()` decodes stdout as JSON. `stream()` is a context
  manager that yields stdout and waits for the process when the block is
  left. The lvm binary defaults to `/sbin/lvm`, and `set_lvm_path()`
  changes it. `command_on_root_ns()` builds the argument vector. For
  testing without lvm, an `executor` callable can stand in for process
  creation.
- `lvmdkit.errors`: `LVMError` (a failed run with its stderr and
  `exit_code()`), `NotFoundError` and `NoMultipleOfSectorSizeError`.
  `as_lvm_error()` finds an `LVMError` in an exception chain.
  `is_lvm_not_found()` recognises lvm's "volume group / logical volume not
  found" failures (exit code 5).
- `lvmdkit.report`: parses `lvs`, `vgs` and `fullreport` JSON into
  `LVRecord` and `VGRecord` with `parse_lv()`, `parse_vg()` and
  `parse_full_report()`. It runs those reports through a runner with
  `get_lv_report()`, `get_vg_report()` and `get_lvm_state()`.
- `lvmdkit.volumes`: `VolumeGroup`, `ThinPool`, `ThinPoolUsage` and
  `LogicalVolume`.
  - Volume groups and thin pools create, find, list and remove volumes.
  - Logical volumes resize, rename, take thin snapshots and activate
    read-only (`"ro"`) or read-write (`"rw"`).
  - Thick volume sizes must be multiples of 4096 bytes.
  - `find_volume_group()`, `list_volume_groups()` and
    `search_volume_group_list()` look volume groups up.
- `lvmdkit.config`: `DeviceClass`, `ThinPoolConfig`, `DeviceType` and
  `LvcreateOptionClass`.
  - `validate_device_classes()` raises `ValueError` for a bad configuration.
  - `DeviceClassManager` looks classes up by name, by volume group or by
    thin pool. It raises `DeviceClassNotFoundError` when nothing matches.
  - `LvcreateOptionClassManager` looks option classes up by name.
  - `get_spare()` gives a class's spare space in bytes. The default is
    10 GiB.
- `lvmdkit.rpc`: request and response dataclasses for the volume services,
  plus `RpcError` and `StatusCode`. `requested_bytes()` falls back to the
  legacy gigabyte field when no byte size is given.
- `lvmdkit.lvservice`: `LVService` has `create_lv()`, `remove_lv()`,
  `resize_lv()` and `create_lv_snapshot()`.
  - It checks free space. On thin pools the free space takes the
    overprovision ratio into account.
  - Failures are raised as `RpcError` with a status code.
  - An optional `notify` callable runs after every change.
- `lvmdkit.health`: `HealthService` always reports `ServingStatus.SERVING`.
  `ReadinessChecker` runs a check function every `interval` seconds until a
  `threading.Event` is set. It becomes ready after the first passing check.
- `lvmdkit.hook`: admission mutators that work on objects as plain JSON
  dicts. Objects are looked up through a `getter(kind, name, namespace)`
  callable that raises `ObjectNotFoundError` for missing objects.
  - `PodMutator` adds a capacity request and limit to the first container,
    and per-device-class capacity annotations to pods that use volumes from
    the configured provisioner.
  - `PVCMutator` adds the finalizer to claims of such storage classes.
  - Both return an `AdmissionResponse`. A mutating response carries a JSON
    patch built by `json_patch()`.
  - Names and defaults come from `HookSettings`.

## Example

```python
from lvmdkit.config import (
    DeviceClass,
    DeviceClassManager,
    LvcreateOptionClassManager,
    validate_device_classes,
)
from lvmdkit.lvservice import LVService
from lvmdkit.rpc import CreateLVRequest
from lvmdkit.runner import LVMRunner

classes = [DeviceClass(name="ssd", volume_group="node1-vg", default=True)]
validate_device_classes(classes)
manager = DeviceClassManager(classes)

service = LVService(manager, LvcreateOptionClassManager(), LVMRunner())
response = service.create_lv(CreateLVRequest(name="vol1", device_class="ssd", size_gb=1))
print(response.volume.size_bytes)
```

Operations that call `lvm` need root privileges on a host with LVM and
`nsenter` installed.

## What it does not do

- It has no volume-group service: there is no per-device-class volume
  listing, free-bytes query or stream of capacity updates to watchers.
- It has no in-process client that bundles the services.
- It ships no RPC server, no webhook HTTP server and no command-line
  program. The services and mutators are plain Python objects for an
  application to host.

## Tests

```
pip install -e .[test]
pytest
```