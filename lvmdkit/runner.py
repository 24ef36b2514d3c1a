"""Invocation of the lvm tool inside the host's root namespaces."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from contextlib import contextmanager
from typing import IO, Any, Callable, Iterator, Mapping, Optional, Sequence

from lvmdkit.errors import LVMError

NSENTER = "/usr/bin/nsenter"
DEFAULT_LVM_PATH = "/sbin/lvm"

logger = logging.getLogger(__name__)

Executor = Callable[[Sequence[str], Mapping[str, str]], Any]


def command_on_root_ns(cmd: str, *args: str) -> list[str]:
    """Build the argument vector that runs ``cmd`` in the namespaces of PID 1."""
    return [NSENTER, "-m", "-u", "-i", "-n", "-p", "-t", "1", cmd, *args]


def _popen(argv: Sequence[str], env: Mapping[str, str]) -> subprocess.Popen:
    return subprocess.Popen(
        list(argv),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=dict(env),
        text=True,
    )


def _finish(process: Any) -> Optional[LVMError]:
    """Drain stderr, release the pipes and wait for the process to exit."""
    stderr = process.stderr.read()
    process.stdout.close()
    process.stderr.close()
    returncode = process.wait()
    if returncode != 0:
        return LVMError(f"exit status {returncode}", stderr, returncode)
    return None


class LVMRunner:
    """Runs lvm sub-commands through nsenter and reads their output."""

    def __init__(
        self,
        lvm_path: str = DEFAULT_LVM_PATH,
        executor: Optional[Executor] = None,
    ) -> None:
        self.lvm_path = lvm_path or DEFAULT_LVM_PATH
        self._executor = executor or _popen

    def set_lvm_path(self, path: str) -> None:
        """Use another lvm binary; an empty path keeps the current one."""
        if path:
            self.lvm_path = path

    @contextmanager
    def stream(self, *args: str) -> Iterator[IO[str]]:
        """Start lvm and yield its stdout.

        Leaving the block waits for the process; a non-zero exit raises
        LVMError carrying the stderr output.
        """
        argv = command_on_root_ns(self.lvm_path, *args)
        env = dict(os.environ, LC_ALL="C")
        logger.debug("invoking command: args=%s", argv)
        process = self._executor(argv, env)
        try:
            yield process.stdout
        except Exception as exc:
            failure = _finish(process)
            if failure is not None:
                raise failure from exc
            raise
        except BaseException:
            _finish(process)
            raise
        failure = _finish(process)
        if failure is not None:
            raise failure

    def call(self, *args: str) -> None:
        """Run lvm and log each line it prints."""
        with self.stream(*args) as output:
            for line in output:
                logger.info(line.strip())

    def call_json(self, *args: str) -> Any:
        """Run lvm and decode its stdout as JSON."""
        with self.stream(*args) as output:
            return json.load(output)