"""Provides utilities to interact with outside processes, e.g. the helper scripts of a cluster installation."""

from __future__ import annotations

import pathlib
import subprocess
from collections.abc import Iterable
from typing import Any, Optional


class ProcResult(str):
    """Wrapper for the result of an external process.

    The result can be used directly as a substitute for the *stdout* of the process (hence the subclassing of `str`). Bool
    checks ensure that the process exited with a zero exit code.

    Parameters
    ----------
    out_data : str
        The stdout of the process.
    err_data : str
        The stderr of the process.
    exit_code : int
        The exit code of the process.
    """
    def __init__(self, out_data: str, err_data: str, exit_code: int) -> None:
        self.out_data = out_data
        self.err_data = err_data
        self.exit_code = exit_code

    def __new__(cls, out_data: str, err_data: str, exit_code: int):
        return str.__new__(cls, out_data)

    def lines(self) -> list[str]:
        """Provides the individual lines of the *stdout* output, without trailing line breaks."""
        return self.out_data.splitlines()

    def __bool__(self) -> bool:
        return self.exit_code == 0

    def __repr__(self) -> str:
        return f"ProcResult(exit_code={self.exit_code}, stdout={repr(self.out_data)}, stderr={repr(self.err_data)})"

    def __str__(self) -> str:
        return self.out_data


def run_cmd(cmd: str | Iterable[Any], *args, work_dir: Optional[str | pathlib.Path] = None, **kwargs) -> ProcResult:
    """Executes an arbitrary external command and captures its output.

    This function delegates to `subprocess.run`. Therefore, most arguments accepted by this function follow the same rules
    as the `run` function.

    Parameters
    ----------
    cmd : str | Iterable[Any]
        The program to execute. Can be either a single invocation, or a list of the program name and its arguments.
    *args
        Additional arguments to be passed to the command.
    work_dir : Optional[str | pathlib.Path], optional
        The working directory of the process. If `None`, the current working directory is used.
    **kwargs
        Additional arguments to customize the subprocess invocation.

    Returns
    -------
    ProcResult
        The result of the process execution. If the command can be executed but fails, the `exit_code` will be non-zero. On the
        other hand, if the command cannot be executed at all (e.g. because it is not found or the user does not have the
        required permissions), an `OSError` is raised.
    """
    if isinstance(cmd, Iterable) and not isinstance(cmd, str):
        cmd = list(cmd)
        cmd, args = str(cmd[0]), cmd[1:] + list(args)
    invocation = [cmd] + [str(arg) for arg in args]

    res = subprocess.run(invocation, capture_output=True, text=True, cwd=work_dir, **kwargs)
    return ProcResult(res.stdout, res.stderr, res.returncode)
