#!/usr/bin/env python3
"""Run the POS integrity checks once and print the report as JSON.

Exits with status 0 for ``PASS``/``WARN`` and 1 for ``FAIL``/``ERROR`` so the
script can gate cron jobs or deploys.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))
from config import get_settings  # noqa: E402
from pos.app.audit import AuditLog  # noqa: E402
from pos.app.db import create_engine, create_sessionmaker, init_models  # noqa: E402
from pos.app.integrity import FAIL, SEVERITY, IntegrityChecker  # noqa: E402


async def run(database_url: str) -> dict:
    engine = create_engine(database_url)
    try:
        await init_models(engine)
        sessionmaker = create_sessionmaker(engine)
        checker = IntegrityChecker(sessionmaker, AuditLog(sessionmaker))
        return await checker.run()
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run POS integrity checks")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL (defaults to DATABASE_URL / config.json)",
    )
    args = parser.parse_args()

    report = asyncio.run(run(args.database_url or get_settings().database_url))
    print(json.dumps(report, indent=2, default=str))
    sys.exit(1 if SEVERITY[report["status"]] >= SEVERITY[FAIL] else 0)


if __name__ == "__main__":
    main()
