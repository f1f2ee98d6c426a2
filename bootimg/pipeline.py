# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import enum
import logging
import subprocess
import tempfile
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Callable, Optional

from bootimg import checkpoint
from bootimg.config import Args, Config
from bootimg.context import Context
from bootimg.errors import BootimgError, CleanupError, FileIOError, ResumeError, ValidationError
from bootimg.host import Host
from bootimg.util import StrEnum

StepFunction = Callable[[Context, Host], None]


class RunState(StrEnum):
    pending       = enum.auto()
    running       = enum.auto()
    paused_before = enum.auto()
    paused_after  = enum.auto()
    completed     = enum.auto()
    failed        = enum.auto()


@dataclasses.dataclass(frozen=True)
class Step:
    name: str
    # 1-based, as used on the command line.
    index: int
    func: StepFunction

    def __call__(self, context: Context, host: Host) -> None:
        if context.args.debug:
            logging.info(f"[{self.index}] {self.name}")

        self.func(context, host)


class StepRegistry:
    """The ordered list of build steps, addressable by name or by 1-based index."""

    def __init__(self, steps: Sequence[tuple[str, StepFunction]]) -> None:
        self.steps = [Step(name, i, func) for i, (name, func) in enumerate(steps, start=1)]
        self.by_name = {step.name: step for step in self.steps}

        if len(self.by_name) != len(self.steps):
            raise ValueError("Step names must be unique")

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __getitem__(self, index: int) -> Step:
        return self.steps[index]

    def names(self) -> list[str]:
        return [step.name for step in self.steps]

    def lookup(self, ref: str) -> Step:
        if ref.isdecimal():
            index = int(ref)
            if not 1 <= index <= len(self.steps):
                raise ValidationError(f"Invalid step number {ref}, must be between 1 and {len(self.steps)}")
            return self.steps[index - 1]

        if (step := self.by_name.get(ref)) is None:
            raise ValidationError(f"Unknown step {ref!r}, must be one of {', '.join(self.names())}")

        return step


class Pipeline:
    """
    Runs the steps of a registry in order, either in full, until or through a given step, or
    resuming from the checkpoint stored in the work directory by an earlier run.

    Two runs must never use the same work directory at the same time.
    """

    def __init__(
        self,
        args: Args,
        config: Config,
        registry: StepRegistry,
        *,
        host: Optional[Host] = None,
    ) -> None:
        self.args = args
        self.config = config
        self.registry = registry
        self.host = host or Host()
        self.state = RunState.pending
        self.context: Optional[Context] = None
        self.error: Optional[BootimgError] = None
        self.workdir: Optional[Path] = args.workdir
        # Temporary work directories are always removed.
        self.clean_workdir = args.clean_workdir or args.workdir is None

    def validate(self) -> tuple[int, RunState]:
        """Check the run-mode options and return where to stop and the state to stop in."""
        if self.args.until and self.args.thru:
            raise ValidationError("Cannot specify both --until and --thru")

        stop, state = len(self.registry), RunState.completed

        if self.args.until:
            stop, state = self.registry.lookup(self.args.until).index - 1, RunState.paused_before
        elif self.args.thru:
            stop, state = self.registry.lookup(self.args.thru).index, RunState.paused_after

        if stop == len(self.registry):
            state = RunState.completed

        if self.args.resume and (self.workdir is None or not self.workdir.is_dir()):
            raise ResumeError("Resuming requires --workdir to point to the work directory of a previous run")

        return stop, state

    def setup_workdir(self) -> Path:
        if self.workdir is None:
            try:
                return Path(tempfile.mkdtemp(prefix="bootimg-"))
            except OSError as e:
                raise FileIOError(f"Error creating temporary workDir: {e}") from e

        try:
            self.host.mkdir(self.workdir, exist_ok=True)
        except OSError as e:
            raise FileIOError(f"Error creating workDir: {e}") from e

        return self.workdir

    def execute(self) -> None:
        stop, final = self.validate()

        if self.args.resume:
            assert self.workdir
            last, context = checkpoint.load(self.workdir, self.args)
        else:
            self.workdir = self.setup_workdir()
            last, context = -1, Context(self.args, self.config, workdir=self.workdir)

        self.context = context
        self.state = RunState.running

        for step in self.registry.steps[last + 1 : stop]:
            # A failing step may already have changed the context, so keep the state it started from.
            snapshot = checkpoint.encode(last, context)

            try:
                step(context, self.host)
            except BootimgError:
                self.state = RunState.failed
                self.save_after_failure(context.workdir, snapshot)
                raise

            last = step.index - 1

        checkpoint.save(context.workdir, last, context)
        self.state = final

    def save_after_failure(self, workdir: Path, snapshot: str) -> None:
        try:
            checkpoint.write(workdir, snapshot)
        except BootimgError as e:
            logging.warning(f"Could not record progress in {workdir}: {e}")

    def run(self) -> bool:
        try:
            self.execute()
        except BootimgError as e:
            self.state = RunState.failed
            self.error = e
            logging.error(str(e))
            return False

        return True

    def teardown(self) -> None:
        if not self.clean_workdir or self.state != RunState.completed or self.workdir is None:
            return

        try:
            self.host.rmtree(self.workdir)
        except (OSError, subprocess.CalledProcessError) as e:
            raise CleanupError(f"Error cleaning up workDir {self.workdir}: {e}") from e
