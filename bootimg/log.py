# SPDX-License-Identifier: LGPL-2.1-or-later

import contextlib
import contextvars
import logging
import os
import sys
from collections.abc import Iterator
from typing import NoReturn, Optional

# Set from --debug before the pipeline starts.
ARG_DEBUG = contextvars.ContextVar("debug", default=False)

# Nesting depth of complete_step() blocks, used to indent progress messages.
DEPTH = 0


def use_colors() -> bool:
    return sys.stderr.isatty() and os.getenv("TERM", "") != "dumb" and "NO_COLOR" not in os.environ


def ansi(code: str) -> str:
    return f"\033[{code}m" if use_colors() else ""


BOLD = ansi("0;1;39")
RESET = ansi("0")

LEVEL_COLORS = {
    logging.DEBUG:    ansi("0;38;5;245"),
    logging.INFO:     "",
    logging.WARNING:  ansi("33;1"),
    logging.ERROR:    ansi("31;1"),
    logging.CRITICAL: ansi("31;1") + BOLD,
}  # fmt: skip


def die(message: str, *, hint: Optional[str] = None) -> NoReturn:
    logging.error(message)
    if hint:
        logging.info(f"({hint})")
    sys.exit(1)


def log_notice(text: str) -> None:
    logging.info(f"{BOLD}{text}{RESET}")


@contextlib.contextmanager
def complete_step(text: str) -> Iterator[None]:
    """Announce a unit of build work and indent whatever is logged while it runs.

    Steps announced while an exception is propagating are shown in parentheses, so the step that
    actually failed stays the most prominent line of the output.
    """
    global DEPTH

    indent = "  " * DEPTH
    if sys.exc_info()[0]:
        logging.info(f"{indent}({text})")
    else:
        logging.info(f"{indent}{BOLD}{text}{RESET}")

    DEPTH += 1
    try:
        yield
    finally:
        DEPTH -= 1


class Formatter(logging.Formatter):
    """Prefix every message with a marker and color it by severity."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno, "")
        return f"‣ {color}{message}{RESET}" if color else f"‣ {message}"


def log_setup(level: Optional[str] = None) -> None:
    """Send log records to stderr at the level named by BOOTIMG_LOG_LEVEL unless one is given."""
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(Formatter("%(message)s"))

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel((level or os.getenv("BOOTIMG_LOG_LEVEL", "info")).upper())
