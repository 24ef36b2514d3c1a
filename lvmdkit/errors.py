"""Errors raised while driving the lvm command line tool."""

from __future__ import annotations

import re
from typing import Optional

MINIMUM_SECTOR_SIZE = 4096

NOT_FOUND_PATTERN = re.compile(
    r'Volume group "(.*?)" not found|Failed to find logical volume "(.*?)"'
)

_NOT_FOUND_EXIT_CODE = 5


class NotFoundError(LookupError):
    """A volume group, logical volume or thin pool does not exist."""

    def __init__(self, message: str = "not found") -> None:
        super().__init__(message)


class NoMultipleOfSectorSizeError(ValueError):
    """A requested volume size is not a multiple of the minimum sector size."""

    def __init__(self, sector_size: int = MINIMUM_SECTOR_SIZE) -> None:
        super().__init__(
            f"cannot create volume as given size is not a multiple of "
            f"{sector_size} and could get rejected"
        )
        self.sector_size = sector_size


class LVMError(RuntimeError):
    """An lvm invocation that exited unsuccessfully, with its stderr output."""

    def __init__(
        self,
        message: str,
        stderr: Optional[str] = None,
        returncode: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stderr = stderr
        self.returncode = returncode

    def __str__(self) -> str:
        if self.stderr is not None:
            return f"{self.message}: {self.stderr.strip()}"
        return self.message

    def exit_code(self) -> int:
        """Return the process exit code, or -1 when none is known."""
        if self.returncode is None:
            return -1
        return self.returncode


def as_lvm_error(err: Optional[BaseException]) -> Optional[LVMError]:
    """Find an LVMError in ``err`` or in the chain of exceptions behind it."""
    seen: set[int] = set()
    current = err
    while current is not None and id(current) not in seen:
        if isinstance(current, LVMError):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


def is_lvm_not_found(err: Optional[BaseException]) -> bool:
    """Tell whether lvm reported a missing volume group or logical volume."""
    lvm_err = as_lvm_error(err)
    if lvm_err is None or lvm_err.exit_code() != _NOT_FOUND_EXIT_CODE:
        return False
    return NOT_FOUND_PATTERN.search(str(lvm_err)) is not None