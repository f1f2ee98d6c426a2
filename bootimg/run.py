# SPDX-License-Identifier: LGPL-2.1-or-later

import contextlib
import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Callable, NoReturn, Optional

from bootimg.errors import BootimgError
from bootimg.log import ARG_DEBUG
from bootimg.util import _FILE, PathString

# These types are only generic during type checking and not at runtime, leading
# to a TypeError during compilation.
# Let's be as strict as we can with the description for the usage we have.
if TYPE_CHECKING:
    CompletedProcess = subprocess.CompletedProcess[str]
    Popen = subprocess.Popen[str]
else:
    CompletedProcess = subprocess.CompletedProcess
    Popen = subprocess.Popen


def ensure_exc_info() -> tuple[type[BaseException], BaseException, TracebackType]:
    exctype, exc, tb = sys.exc_info()
    assert exctype
    assert exc
    assert tb
    return (exctype, exc, tb)


@contextlib.contextmanager
def uncaught_exception_handler(exit: Callable[[int], NoReturn] = sys.exit) -> Iterator[None]:
    rc = 0
    try:
        yield
    except SystemExit as e:
        rc = e.code if isinstance(e.code, int) else 1

        if ARG_DEBUG.get():
            sys.excepthook(*ensure_exc_info())
    except KeyboardInterrupt:
        rc = 1

        if ARG_DEBUG.get():
            sys.excepthook(*ensure_exc_info())
        else:
            logging.error("Interrupted")
    except BootimgError as e:
        # Build failures carry a complete message already, only show the stacktrace when debugging.
        rc = 1
        logging.error(str(e))

        if ARG_DEBUG.get():
            sys.excepthook(*ensure_exc_info())
    except subprocess.CalledProcessError as e:
        # We always log when subprocess.CalledProcessError is raised, so we don't log again here.
        rc = e.returncode

        if ARG_DEBUG.get():
            sys.excepthook(*ensure_exc_info())
    except BaseException:
        sys.excepthook(*ensure_exc_info())
        rc = 1
    finally:
        sys.stdout.flush()
        sys.stderr.flush()
        exit(rc)


def log_process_failure(cmdline: Sequence[str], returncode: int) -> None:
    if -returncode in (signal.SIGINT, signal.SIGTERM):
        logging.error(f"Interrupted by {signal.Signals(-returncode).name} signal")
    elif returncode < 0:
        logging.error(f'"{shlex.join(cmdline)}" was killed by {signal.Signals(-returncode).name} signal.')
    elif returncode == 127:
        logging.error(f"{cmdline[0]} not found.")
    else:
        logging.error(f'"{shlex.join(cmdline)}" returned non-zero exit code {returncode}.')


def run(
    cmdline: Sequence[PathString],
    stdout: _FILE = None,
    input: Optional[str] = None,
    env: Mapping[str, str] = {},
    cwd: Optional[Path] = None,
) -> CompletedProcess:
    """Run a host tool and raise CalledProcessError, after logging why, if it does not succeed."""
    stdin = subprocess.PIPE if input is not None else None

    with spawn(cmdline, stdin=stdin, stdout=stdout, env=env, cwd=cwd) as process:
        out, _ = process.communicate(input)

    return CompletedProcess(cmdline, process.returncode, out)


@contextlib.contextmanager
def spawn(
    cmdline: Sequence[PathString],
    stdin: _FILE = None,
    stdout: _FILE = None,
    env: Mapping[str, str] = {},
    cwd: Optional[Path] = None,
) -> Iterator[Popen]:
    cmd = [os.fspath(x) for x in cmdline]

    if ARG_DEBUG.get():
        logging.info(f"+ {shlex.join(cmd)}")

    # Tool output goes to stderr alongside our own log messages unless the caller captures it.
    if not stdout:
        stdout = sys.stderr

    if stdin is None:
        stdin = subprocess.DEVNULL

    env = {
        "PATH": os.environ["PATH"],
        "TERM": os.getenv("TERM", "vt220"),
        "LANG": "C.UTF-8",
        **{k: v for k, v in env.items() if k != "LANG" and not k.startswith("LC_")},
    }

    if "TMPDIR" in os.environ:
        env["TMPDIR"] = os.environ["TMPDIR"]

    if "HOME" not in env:
        env["HOME"] = "/"

    try:
        proc = subprocess.Popen(cmd, stdin=stdin, stdout=stdout, text=True, env=env, cwd=cwd)
    except FileNotFoundError as e:
        # Report a missing binary the same way a shell would.
        log_process_failure(cmd, 127)
        raise subprocess.CalledProcessError(127, cmd) from e

    try:
        yield proc
        proc.wait()
    except KeyboardInterrupt:
        proc.send_signal(signal.SIGINT)
        raise
    except BaseException:
        proc.terminate()
        raise
    finally:
        returncode = proc.wait()

    if returncode != 0:
        log_process_failure(cmd, returncode)
        raise subprocess.CalledProcessError(returncode, cmd)


def find_binary(*names: PathString, extra: Sequence[Path] = ()) -> Optional[Path]:
    path = ":".join([*(os.fspath(p) for p in extra), os.environ.get("PATH", "/usr/bin:/usr/sbin")])

    for name in names:
        if binary := shutil.which(name, path=path):
            return Path(binary)

    return None
