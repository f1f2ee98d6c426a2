# SPDX-License-Identifier: LGPL-2.1-or-later

import faulthandler
import signal
import sys
from types import FrameType
from typing import Optional

from bootimg import run_build
from bootimg.config import parse_config
from bootimg.log import log_setup
from bootimg.run import uncaught_exception_handler


def onsigterm(signal: int, frame: Optional[FrameType]) -> None:
    raise KeyboardInterrupt()


@uncaught_exception_handler()
def main() -> None:
    signal.signal(signal.SIGTERM, onsigterm)

    log_setup()
    args, config = parse_config(sys.argv[1:])

    if args.debug:
        faulthandler.enable()

    run_build(args, config)


if __name__ == "__main__":
    main()
