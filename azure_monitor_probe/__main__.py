"""Command line entry point: `python -m azure_monitor_probe`."""

import argparse
import os
from typing import Optional, Sequence

import uvicorn

from azure_monitor_probe.shared.core.config import (
    get_settings,
    reload_settings_from_environment,
)


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="azure_monitor_probe",
        description="Serve Azure Monitor metrics on demand for Prometheus (GET /probe).",
    )
    parser.add_argument("--host", default=settings.HOST, help="Listen address")
    parser.add_argument("--port", type=int, default=settings.PORT, help="Listen port")
    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL.lower(),
        choices=["critical", "error", "warning", "info", "debug"],
        type=str.lower,
        help="Log level for the probe and uvicorn",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    # The app module configures logging from settings on import.
    os.environ["LOG_LEVEL"] = args.log_level.upper()
    reload_settings_from_environment()

    uvicorn.run(
        "azure_monitor_probe.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
