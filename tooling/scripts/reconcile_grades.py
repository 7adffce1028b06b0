"""Reconcile every active member's grade once.

Intended usage: schedule via cron when the in-process grade sweep worker is
disabled, or run manually after bulk order imports.

Example:
    python tooling/scripts/reconcile_grades.py --batch-size 500
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one grade reconciliation sweep")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Override the number of members loaded per page.",
    )
    return parser.parse_args()


async def _run(batch_size: int | None):
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from roastery_api.core.settings import settings  # type: ignore import-position
    from roastery_api.db.session import async_session  # type: ignore import-position
    from roastery_api.workers import GradeSweepWorker  # type: ignore import-position

    worker = GradeSweepWorker(
        async_session,  # type: ignore[arg-type]
        interval_seconds=settings.grade_sweep_interval_seconds,
        batch_size=batch_size or settings.grade_sweep_batch_size,
    )
    return await worker.run_once()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.batch_size))
    for member_id, error in summary.failures.items():
        logger.warning("Grade reconciliation failed", member_id=member_id, error=error)
    logger.success(
        "Grade reconciliation sweep completed",
        scanned=summary.scanned,
        updated=summary.updated,
        failed=summary.failed,
    )
    return 1 if summary.failed else 0


if __name__ == "__main__":
    sys.exit(main())
