# SPDX-License-Identifier: LGPL-2.1-or-later

import json
import logging
import os
import tempfile
from pathlib import Path

from bootimg.config import Args, dump_json
from bootimg.context import Context
from bootimg.errors import (
    CheckpointCorruptError,
    CheckpointNotFoundError,
    CheckpointReadError,
    FileIOError,
    SerializationError,
)

CHECKPOINT_NAME = "bootimg.json"
CHECKPOINT_VERSION = 1


def checkpoint_path(workdir: Path) -> Path:
    return workdir / CHECKPOINT_NAME


def encode(index: int, context: Context) -> str:
    """Serialize the index of the last completed step together with the context."""
    try:
        return dump_json({"version": CHECKPOINT_VERSION, "step": index, "context": context.to_dict()})
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Error encoding metadata: {e}") from e


def write(workdir: Path, data: str) -> None:
    """Store an encoded checkpoint in the work directory.

    The checkpoint is written to a temporary file next to the final one and renamed over it,
    so a crash never leaves a torn checkpoint behind.
    """
    path = checkpoint_path(workdir)

    try:
        fd, tmp = tempfile.mkstemp(dir=workdir, prefix=f".{CHECKPOINT_NAME}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            os.unlink(tmp)
            raise
    except OSError as e:
        raise FileIOError(f"Error writing metadata file {path}: {e}") from e

    logging.debug(f"Saved checkpoint to {path}")


def save(workdir: Path, index: int, context: Context) -> None:
    write(workdir, encode(index, context))


def load(workdir: Path, args: Args) -> tuple[int, Context]:
    path = checkpoint_path(workdir)

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise CheckpointNotFoundError(f"No metadata file found in {workdir}") from e
    except UnicodeDecodeError as e:
        raise CheckpointCorruptError(f"Error parsing metadata file {path}: {e}") from e
    except OSError as e:
        raise CheckpointReadError(f"Error reading metadata file {path}: {e}") from e

    try:
        j = json.loads(text)
        if j["version"] != CHECKPOINT_VERSION:
            raise ValueError(f"unsupported version {j['version']}")
        index = j["step"]
        if not isinstance(index, int) or index < -1:
            raise ValueError(f"invalid step index {index!r}")
        context = Context.from_dict(j["context"], args)
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise CheckpointCorruptError(f"Error parsing metadata file {path}: {e}") from e

    context.workdir = workdir

    return index, context
