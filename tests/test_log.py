# SPDX-License-Identifier: LGPL-2.1-or-later

import logging

import pytest

from bootimg import log
from bootimg.log import Formatter, complete_step, die


def test_complete_step_indents(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    with complete_step("Outer"):
        with complete_step("Inner"):
            pass

    assert log.DEPTH == 0
    assert [r.getMessage() for r in caplog.records] == [
        f"{log.BOLD}Outer{log.RESET}",
        f"  {log.BOLD}Inner{log.RESET}",
    ]


def test_complete_step_while_failing(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        with complete_step("Cleaning up"):
            pass

    assert caplog.records[-1].getMessage() == "(Cleaning up)"


def test_formatter() -> None:
    record = logging.LogRecord("bootimg", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    assert Formatter("%(message)s").format(record) == "‣ hello world"


def test_die(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    with pytest.raises(SystemExit) as e:
        die("Invalid entry", hint="Use KEY=VALUE")

    assert e.value.code == 1
    assert "Invalid entry" in caplog.text
    assert "(Use KEY=VALUE)" in caplog.text
