from __future__ import annotations

import logging
import sys
from typing import Dict, Iterable

_HANDLER_FLAG = "_prism_handler"


def is_truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def configure_logger(name: str, *, debug: bool = False) -> logging.Logger:
    """Attach a single stderr handler to ``prism.<name>``.

    stdout carries protocol traffic for the stdio server and the bridge, so
    nothing here ever writes to it.
    """

    logger = logging.getLogger(f"prism.{name}")
    logger.propagate = True

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_FLAG, False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(f"[prism-{name}] %(message)s"))
    setattr(handler, _HANDLER_FLAG, True)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    return logger


def configure_loggers(names: Iterable[str], *, debug: bool = False) -> Dict[str, logging.Logger]:
    return {name: configure_logger(name, debug=debug) for name in names}
