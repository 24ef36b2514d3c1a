from lvmdkit.rpc import (
    RpcError,
    StatusCode,
    ThinPoolItem,
    WatchItem,
    WatchResponse,
    requested_bytes,
)


def test_requested_bytes_prefers_bytes():
    assert requested_bytes(1 << 30, 5) == 1 << 30


def test_requested_bytes_falls_back_to_gigabytes():
    assert requested_bytes(0, 1) == 1 << 30
    assert requested_bytes(0, 2) == 2 << 30
    assert requested_bytes(0, 0) == 0


def test_rpc_error_carries_code_and_message():
    err = RpcError(StatusCode.NOT_FOUND, "device-class not found: dc")
    assert err.code is StatusCode.NOT_FOUND
    assert err.message == "device-class not found: dc"
    assert "device-class not found: dc" in str(err)
    assert "NOT_FOUND" in str(err)


def test_status_code_values_fixed_by_protocol():
    assert int(RpcError(StatusCode.NOT_FOUND, "x").code) == 5
    assert int(RpcError(StatusCode.INTERNAL, "x").code) == 13


def test_merge_sets_free_bytes():
    res = WatchResponse()
    res.merge(WatchResponse(free_bytes=1))
    assert res.free_bytes == 1


def test_merge_keeps_free_bytes_when_other_unset():
    res = WatchResponse(free_bytes=7)
    res.merge(WatchResponse())
    assert res.free_bytes == 7


def test_merge_appends_copies_of_items():
    item = WatchItem(device_class="dc", free_bytes=10, size_bytes=20,
                     thin_pool=ThinPoolItem(overprovision_bytes=30))
    res = WatchResponse(items=[WatchItem(device_class="first")])
    other = WatchResponse(items=[item])
    res.merge(other)
    assert [i.device_class for i in res.items] == ["first", "dc"]
    assert res.items[1] == item
    item.thin_pool.overprovision_bytes = 99
    assert res.items[1].thin_pool.overprovision_bytes == 30