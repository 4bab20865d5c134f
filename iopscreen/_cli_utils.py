from __future__ import annotations

import argparse
import logging

from .registry import resolve_model_id

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_model_id(raw: str) -> str:
    try:
        return resolve_model_id(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_log_level(raw: str) -> int:
    level = raw.strip().upper()
    if level not in LOG_LEVELS:
        raise argparse.ArgumentTypeError(
            f"Invalid log level '{raw}'. Expected one of: {', '.join(LOG_LEVELS)}"
        )
    return getattr(logging, level)


def add_log_level_argument(parser: argparse.ArgumentParser, default: str = "WARNING") -> None:
    parser.add_argument(
        "--log-level",
        type=parse_log_level,
        default=parse_log_level(default),
        help=f"Logging verbosity ({', '.join(LOG_LEVELS)}). Default: {default}",
    )


def configure_logging(level: int) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
