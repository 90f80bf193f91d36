#!/usr/bin/env python3
"""
Run the weekly settlement batch against the configured database.

Meant for cron / pg_cron style schedulers that prefer a process over an
HTTP call.  Scheduled for Monday 06:00 Pacific (14:00 UTC):

    0 14 * * 1  python scripts/run_weekly_settlement.py

Prints the same JSON body the ``/api/v1/settlements/weekly-run`` endpoint
returns and exits non-zero when the batch itself could not run.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from app import models  # noqa: E402,F401
from app.core.config import settings  # noqa: E402
from app.core.database import SessionLocal  # noqa: E402
from app.core.logging import setup_logging  # noqa: E402
from app.services.settlement.runner import SettlementRunner  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--as-of",
        type=datetime.fromisoformat,
        default=None,
        help="ISO instant used to resolve the previous week (default: now)",
    )
    parser.add_argument(
        "--site",
        action="append",
        default=None,
        help="Settle only this site; repeat for several",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logger = setup_logging(settings.log_level)

    db = SessionLocal()
    try:
        batch = SettlementRunner(db=db, config=settings).run_weekly(
            now=args.as_of, sites=args.site
        )
    except Exception as exc:
        db.rollback()
        logger.exception("Weekly settlement batch failed")
        print(json.dumps({"success": False, "error": str(exc)}))
        return 1
    finally:
        db.close()

    print(
        json.dumps(
            {
                "success": True,
                "period": batch.period.as_dict(),
                "results": [outcome.as_dict() for outcome in batch.results],
                "audit_recorded": batch.audit_recorded,
            },
            default=str,
            indent=2,
        )
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
