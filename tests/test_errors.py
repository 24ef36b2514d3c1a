from lvmdkit.errors import (
    MINIMUM_SECTOR_SIZE,
    LVMError,
    NoMultipleOfSectorSizeError,
    NotFoundError,
    as_lvm_error,
    is_lvm_not_found,
)


def test_message_includes_trimmed_stderr():
    err = LVMError("exit status 5", "  something broke \n", 5)
    assert str(err) == "exit status 5: something broke"


def test_message_without_stderr():
    err = LVMError("exit status 3")
    assert str(err) == "exit status 3"


def test_exit_code_defaults_to_minus_one():
    assert LVMError("signal").exit_code() == -1
    assert LVMError("exit status 5", "", 5).exit_code() == 5


def test_volume_group_not_found_is_recognised():
    err = LVMError("exit status 5", 'Volume group "vg0" not found', 5)
    assert is_lvm_not_found(err) is True


def test_logical_volume_not_found_is_recognised():
    err = LVMError("exit status 5", 'Failed to find logical volume "vg0/lv"', 5)
    assert is_lvm_not_found(err) is True


def test_other_exit_code_is_not_not_found():
    err = LVMError("exit status 3", 'Volume group "vg0" not found', 3)
    assert is_lvm_not_found(err) is False


def test_exit_code_five_with_other_message_is_not_not_found():
    err = LVMError("exit status 5", "No device found for /dev/does-not-exist", 5)
    assert is_lvm_not_found(err) is False


def test_plain_exception_is_not_not_found():
    assert is_lvm_not_found(ValueError('Volume group "vg0" not found')) is False
    assert is_lvm_not_found(None) is False


def test_as_lvm_error_walks_the_cause_chain():
    original = LVMError("exit status 5", 'Volume group "x" not found', 5)
    try:
        try:
            raise original
        except LVMError as inner:
            raise NotFoundError() from inner
    except NotFoundError as outer:
        assert as_lvm_error(outer) is original
        assert is_lvm_not_found(outer) is True


def test_as_lvm_error_returns_none_for_unrelated():
    assert as_lvm_error(KeyError("x")) is None


def test_not_found_default_message():
    err = NotFoundError()
    assert "not found" in str(err)


def test_sector_size_error_mentions_sector_size():
    err = NoMultipleOfSectorSizeError()
    assert str(MINIMUM_SECTOR_SIZE) in str(err)
    assert err.sector_size == MINIMUM_SECTOR_SIZE