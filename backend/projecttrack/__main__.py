from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

import uvicorn

from .config import settings
from .logging_setup import configure_logging

logger = logging.getLogger("projecttrack.worker")


def _serve(args: argparse.Namespace) -> None:
    uvicorn.run("projecttrack.main:app", host=args.host, port=args.port, reload=False)


def _sweep(args: argparse.Namespace) -> None:
    from . import models
    from .database import SessionLocal, engine
    from .sweeper import IdleSweeper, SweepConfig

    configure_logging(level=settings.log_level)
    models.Base.metadata.create_all(bind=engine)
    config = SweepConfig.from_settings(settings)
    if args.interval:
        config = SweepConfig(
            interval_seconds=args.interval,
            liveness_timeout=config.liveness_timeout,
            grace_window=config.grace_window,
        )
    sweeper = IdleSweeper(SessionLocal, config)
    if args.once:
        result = sweeper.sweep()
        logger.info("sweep run", extra={"stopped": result.stopped, "failed": result.failed})
        return
    try:
        sweeper.run_forever()
    except KeyboardInterrupt:
        sweeper.stop()


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="projecttrack", description="ProjectTrack API and workers.")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the HTTP API (default).")
    serve.add_argument("--host", default=settings.host)
    serve.add_argument("--port", type=int, default=settings.port)
    serve.set_defaults(handler=_serve)

    sweep = subparsers.add_parser("sweep", help="Auto-stop sessions without liveness signals.")
    sweep.add_argument("--once", action="store_true", help="Run one pass and exit.")
    sweep.add_argument("--interval", type=int, default=None, help="Seconds between passes.")
    sweep.set_defaults(handler=_sweep)

    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args(["serve", *(argv or [])])
    args.handler(args)


if __name__ == "__main__":
    main()
