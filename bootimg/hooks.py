# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
import os
import subprocess
from collections.abc import Sequence
from pathlib import Path

from bootimg.errors import HookError
from bootimg.host import Host
from bootimg.log import complete_step


def run_hook(script: Path, env_var: str, target: Path, *, host: Host) -> None:
    try:
        host.run([script], env={env_var: os.fspath(target)})
    except (OSError, subprocess.CalledProcessError) as e:
        raise HookError(f"Error running hook {script}: {e}") from e


def run_hooks(
    hook: str,
    env_var: str,
    target: Path,
    *,
    directories: Sequence[Path],
    host: Host,
) -> None:
    """Run the hook scripts for hook found in each of the hooks directories.

    Scripts in <directory>/<hook>.d/ run in directory order, followed by <directory>/<hook> if it
    exists. Each script gets env_var pointing to target in its environment. A missing hooks
    directory is not an error, the first failing script stops the remaining ones.
    """
    for directory in directories:
        hookd = directory / f"{hook}.d"

        try:
            scripts = host.listdir(hookd)
        except FileNotFoundError:
            scripts = []
        except OSError as e:
            raise HookError(f"Error reading hooks directory {hookd}: {e}") from e

        if (single := directory / hook).is_file():
            scripts.append(single)

        for script in scripts:
            if not os.access(script, os.X_OK) or script.is_dir():
                logging.warning(f"Skipping {script} as it is not an executable file")
                continue

            with complete_step(f"Running {hook} hook {script.name}…"):
                run_hook(script, env_var, target, host=host)
