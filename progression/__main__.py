"""
progression.__main__ — Maintenance CLI
=======================================

Run with::

    python -m progression init-db        # create tables + seed defaults
    python -m progression seed           # seed defaults only
    python -m progression reset-daily    # daily mission sweep (cron)
    python -m progression reset-weekly   # weekly mission sweep (cron)
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from progression.config import ProgressionConfig, load_config
from progression.core import ProgressionEngine
from progression.database.engine import create_db_engine, init_db
from progression.database.seed import seed_defaults

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("progression")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="progression")
    parser.add_argument(
        "--config", default=None,
        help="Path to config.yaml (defaults are used when omitted)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create tables and seed default data")
    sub.add_parser("seed", help="Seed default data into existing tables")
    sub.add_parser("reset-daily", help="Reset expired daily missions")
    sub.add_parser("reset-weekly", help="Reset expired weekly missions")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = _build_parser().parse_args(argv)
    config = load_config(args.config) if args.config else ProgressionConfig()
    db = create_db_engine()

    if args.command == "init-db":
        init_db(db)
    elif args.command == "seed":
        seed_defaults(db)
    else:
        engine = ProgressionEngine(db, config=config)
        if args.command == "reset-daily":
            summary = engine.reset_daily_missions()
        else:
            summary = engine.reset_weekly_missions()
        logger.info(
            "%s sweep done: %d missions, %d progress rows",
            summary.cadence, summary.missions_reset, summary.progress_rows_reset,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
