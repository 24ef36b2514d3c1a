import io
import json
from contextlib import contextmanager

import pytest

from lvmdkit.errors import (
    MINIMUM_SECTOR_SIZE,
    LVMError,
    NoMultipleOfSectorSizeError,
    NotFoundError,
)
from lvmdkit.volumes import (
    LogicalVolume,
    ThinPool,
    ThinPoolUsage,
    VolumeGroup,
    find_volume_group,
    list_volume_groups,
    search_volume_group_list,
)

GIB = 1 << 30


def lv_entry(name, vg="vg0", size=GIB, attr="-wi-a-----", pool="", origin="",
             origin_size="", tags="", data="", meta=""):
    return {
        "lv_uuid": f"uuid-{name}",
        "lv_name": name,
        "lv_full_name": f"{vg}/{name}",
        "lv_path": f"/dev/{vg}/{name}",
        "lv_size": str(size),
        "lv_kernel_major": "253",
        "lv_kernel_minor": "1",
        "origin": origin,
        "origin_size": origin_size,
        "pool_lv": pool,
        "lv_tags": tags,
        "lv_attr": attr,
        "vg_name": vg,
        "data_percent": data,
        "metadata_percent": meta,
    }


def vg_entry(name, size=10 * GIB, free=5 * GIB):
    return {"vg_name": name, "vg_uuid": f"uuid-{name}",
            "vg_size": str(size), "vg_free": str(free)}


class FakeRunner:
    def __init__(self, vgs=(), lvs=(), fail=None):
        self.vgs = list(vgs)
        self.lvs = list(lvs)
        self.fail = fail
        self.calls = []
        self.json_calls = []

    def call(self, *args):
        self.calls.append(list(args))
        if self.fail is not None:
            raise self.fail
        if args[0] == "lvresize":
            size = int(args[-2].rstrip("b"))
            for entry in self.lvs:
                if entry["lv_full_name"] == args[-1]:
                    entry["lv_size"] = str(size)

    def call_json(self, *args):
        self.json_calls.append(list(args))
        if args[0] == "vgs":
            return {"report": [{"vg": [v for v in self.vgs if v["vg_name"] == args[1]]}]}
        target = args[1]
        if "/" in target:
            found = [e for e in self.lvs if e["lv_full_name"] == target]
        else:
            found = [e for e in self.lvs if e["vg_name"] == target]
        return {"report": [{"lv": found}]}

    @contextmanager
    def stream(self, *args):
        self.calls.append(list(args))
        yield io.StringIO(json.dumps({"report": [{"vg": self.vgs, "lv": self.lvs}]}))


def make_vg(runner, name="vg0"):
    return find_volume_group(runner, name)


def test_find_volume_group_reads_report():
    runner = FakeRunner(vgs=[vg_entry("vg0", size=10 * GIB, free=5 * GIB)])
    vg = make_vg(runner)
    assert vg.name == "vg0"
    assert vg.size == 10 * GIB
    assert vg.free == 5 * GIB
    assert runner.json_calls[0][:2] == ["vgs", "vg0"]


def test_find_volume_group_missing():
    with pytest.raises(NotFoundError):
        find_volume_group(FakeRunner(), "nope")


def test_search_volume_group_list():
    runner = FakeRunner(vgs=[vg_entry("a"), vg_entry("b")])
    groups = list_volume_groups(runner)
    assert search_volume_group_list(groups, "b").name == "b"
    with pytest.raises(NotFoundError):
        search_volume_group_list(groups, "c")


def test_list_volume_groups_splits_lvs_without_extra_calls():
    runner = FakeRunner(
        vgs=[vg_entry("a"), vg_entry("b")],
        lvs=[lv_entry("x", vg="a"), lv_entry("y", vg="b"), lv_entry("z", vg="b")],
    )
    groups = list_volume_groups(runner)
    assert [g.name for g in groups] == ["a", "b"]
    assert sorted(groups[1].list_volumes()) == ["y", "z"]
    assert groups[0].find_volume("x").full_name == "a/x"
    assert runner.json_calls == []


def test_list_volumes_excludes_thin_pools():
    runner = FakeRunner(
        vgs=[vg_entry("vg0")],
        lvs=[lv_entry("pool0", attr="twi-a-tz--"), lv_entry("lv1")],
    )
    vg = make_vg(runner)
    assert list(vg.list_volumes()) == ["lv1"]
    assert list(vg.list_pools()) == ["pool0"]


def test_find_volume_missing():
    vg = make_vg(FakeRunner(vgs=[vg_entry("vg0")]))
    with pytest.raises(NotFoundError):
        vg.find_volume("ghost")
    assert vg.list_volumes() == {}


def test_find_pool_missing():
    runner = FakeRunner(vgs=[vg_entry("vg0")], lvs=[lv_entry("lv1")])
    with pytest.raises(NotFoundError):
        make_vg(runner).find_pool("pool0")


def test_create_volume_arguments():
    runner = FakeRunner(vgs=[vg_entry("vg0")])
    vg = make_vg(runner)
    vg.create_volume("test1", MINIMUM_SECTOR_SIZE, ["tag"], 2, "4k", ["--mirrors=1"])
    assert runner.calls[-1] == [
        "lvcreate", "-n", "test1", "-L", f"{MINIMUM_SECTOR_SIZE}b", "-W", "y", "-y",
        "--addtag", "tag", "-i", "2", "-I", "4k", "--mirrors=1", "vg0",
    ]


def test_create_volume_without_stripe_ignores_stripe_size():
    runner = FakeRunner(vgs=[vg_entry("vg0")])
    make_vg(runner).create_volume("t", GIB, None, 0, "4k", None)
    assert "-I" not in runner.calls[-1]
    assert "-i" not in runner.calls[-1]
    assert runner.calls[-1][-1] == "vg0"


def test_create_volume_rejects_unaligned_size():
    runner = FakeRunner(vgs=[vg_entry("vg0")])
    with pytest.raises(NoMultipleOfSectorSizeError):
        make_vg(runner).create_volume("t", MINIMUM_SECTOR_SIZE + 1, ["tag"], 0, "", None)
    assert runner.calls == []


def test_create_pool_then_finds_it():
    runner = FakeRunner(vgs=[vg_entry("vg0")], lvs=[lv_entry("pool0", attr="twi-a-tz--")])
    pool = make_vg(runner).create_pool("pool0", GIB)
    assert isinstance(pool, ThinPool)
    assert pool.full_name == "vg0/pool0"
    assert runner.calls[-1] == ["lvcreate", "-T", "vg0/pool0", "--size", f"{GIB}b"]


def thin_runner():
    return FakeRunner(
        vgs=[vg_entry("vg0")],
        lvs=[
            lv_entry("pool0", attr="twi-a-tz--", data="0.00", meta="10.84"),
            lv_entry("t1", attr="Vwi-a-tz--", pool="pool0", size=GIB),
            lv_entry("t2", attr="Vwi-a-tz--", pool="pool0", size=2 * GIB),
            lv_entry("thick"),
        ],
    )


def test_thin_pool_lists_only_its_volumes_and_free():
    pool = make_vg(thin_runner()).find_pool("pool0")
    assert sorted(pool.list_volumes()) == ["t1", "t2"]
    usage = pool.free()
    assert usage == ThinPoolUsage(
        data_percent=0.0, metadata_percent=10.84,
        virtual_bytes=GIB + 2 * GIB, size_bytes=GIB,
    )


def test_thin_pool_find_volume_rejects_thick():
    pool = make_vg(thin_runner()).find_pool("pool0")
    assert pool.find_volume("t1").is_thin()
    with pytest.raises(NotFoundError):
        pool.find_volume("thick")


def test_thin_pool_create_volume_arguments():
    runner = thin_runner()
    pool = make_vg(runner).find_pool("pool0")
    pool.create_volume("tp", GIB, ["a", "b"], 0, "", None)
    assert runner.calls[-1] == [
        "lvcreate", "-T", "vg0/pool0", "-n", "tp", "-V", f"{GIB}b", "-W", "y", "-y",
        "--addtag", "a", "--addtag", "b",
    ]


def test_thin_pool_resize_same_size_is_noop():
    runner = thin_runner()
    pool = make_vg(runner).find_pool("pool0")
    pool.resize(pool.size)
    assert runner.calls == []
    with pytest.raises(NoMultipleOfSectorSizeError):
        pool.resize(GIB + 1)


def test_snapshot_size_uses_origin_size_for_thick_snapshots():
    runner = FakeRunner(
        vgs=[vg_entry("vg0")],
        lvs=[lv_entry("origin"),
             lv_entry("snap", origin="origin", origin_size=str(2 * GIB), size=GIB)],
    )
    vg = make_vg(runner)
    snap = vg.find_volume("snap")
    assert snap.is_snapshot()
    assert not snap.is_thin()
    assert snap.size == 2 * GIB
    assert snap.origin().name == "origin"
    assert vg.find_volume("origin").origin() is None


def test_volume_pool_lookup():
    vg = make_vg(thin_runner())
    assert vg.find_volume("t1").pool().name == "pool0"
    assert vg.find_volume("thick").pool() is None


def test_thin_snapshot():
    runner = thin_runner()
    vg = make_vg(runner)
    vg.find_volume("t1").thin_snapshot("snap1", ["s"])
    assert runner.calls[-1] == [
        "lvcreate", "-s", "-k", "n", "-n", "snap1", "vg0/t1", "--addtag", "s",
    ]
    with pytest.raises(ValueError):
        vg.find_volume("thick").thin_snapshot("snap2", None)


def test_activate():
    runner = thin_runner()
    vol = make_vg(runner).find_volume("t1")
    vol.activate("ro")
    assert runner.calls[-1] == ["lvchange", "-p", "r", "/dev/vg0/t1"]
    vol.activate("rw")
    assert runner.calls[-1] == ["lvchange", "-k", "n", "-a", "y", "/dev/vg0/t1"]
    with pytest.raises(ValueError):
        vol.activate("wo")


def test_resize_volume():
    runner = thin_runner()
    vol = make_vg(runner).find_volume("thick")
    with pytest.raises(ValueError):
        vol.resize(GIB - MINIMUM_SECTOR_SIZE)
    vol.resize(GIB)
    assert runner.calls == []
    vol.resize(2 * GIB)
    assert runner.calls[-1] == ["lvresize", "-L", f"{2 * GIB}b", "vg0/thick"]
    assert vol.size == 2 * GIB


def test_remove_volume_not_found_maps_error():
    lvm_err = LVMError("exit status 5", 'Failed to find logical volume "vg0/x"', 5)
    vg = make_vg(FakeRunner(vgs=[vg_entry("vg0")]))
    vg.runner.fail = lvm_err
    with pytest.raises(NotFoundError):
        vg.remove_volume("x")
    assert vg.runner.calls[-1] == ["lvremove", "-f", "vg0/x"]


def test_remove_volume_other_error_propagates():
    vg = make_vg(FakeRunner(vgs=[vg_entry("vg0")]))
    vg.runner.fail = LVMError("exit status 3", "boom", 3)
    with pytest.raises(LVMError):
        vg.remove_volume("x")


def test_rename_updates_identity():
    runner = thin_runner()
    vol = make_vg(runner).find_volume("thick")
    vol.rename("renamed")
    assert runner.calls[-1] == ["lvrename", "vg0", "thick", "renamed"]
    assert vol.name == "renamed"
    assert vol.full_name == "vg0/renamed"
    assert vol.path == "/dev/vg0/renamed"


def test_update_drops_report_and_refreshes_state():
    runner = FakeRunner(vgs=[vg_entry("vg0", free=5 * GIB)], lvs=[lv_entry("a")])
    vg = list_volume_groups(runner)[0]
    assert vg.report_lvs is not None
    runner.vgs = [vg_entry("vg0", free=GIB)]
    vg.update()
    assert vg.report_lvs is None
    assert vg.free == GIB
    assert isinstance(vg.find_volume("a"), LogicalVolume)
    assert isinstance(vg, VolumeGroup)