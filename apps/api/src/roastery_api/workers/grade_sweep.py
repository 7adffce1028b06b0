"""Worker that periodically reconciles every active member's grade."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.core.settings import settings
from roastery_api.services.errors import CommerceError
from roastery_api.services.loyalty.grades import GradeReconciler

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]
ReconcilerFactory = Callable[[AsyncSession], GradeReconciler]


@dataclass
class GradeSweepSummary:
    scanned: int = 0
    updated: int = 0
    failed: int = 0
    failures: dict[str, str] = field(default_factory=dict)


class GradeSweepWorker:
    """Runs grade reconciliation over all active members on an interval.

    Reconciliation is idempotent, so overlapping with request-time
    reconciliation is harmless.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
        reconciler_factory: ReconcilerFactory | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.grade_sweep_interval_seconds
        self.batch_size = batch_size or settings.grade_sweep_batch_size
        self._reconciler_factory = reconciler_factory
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False
        self._logger = logger.bind(worker="grade_sweep")

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        self._logger.info(
            "Grade sweep worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self.batch_size,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        self._logger.info("Grade sweep worker stopped")

    async def run_once(self) -> GradeSweepSummary:
        summary = GradeSweepSummary()
        session = await self._ensure_session()
        async with session as managed_session:
            reconciler = self._build_reconciler(managed_session)
            cursor: UUID | None = None
            while True:
                member_ids = await reconciler.list_active_member_ids(after=cursor, limit=self.batch_size)
                if not member_ids:
                    break
                for member_id in member_ids:
                    summary.scanned += 1
                    try:
                        result = await reconciler.reconcile(member_id)
                    except (CommerceError, SQLAlchemyError) as exc:
                        await managed_session.rollback()
                        summary.failed += 1
                        summary.failures[str(member_id)] = getattr(exc, "message", None) or exc.__class__.__name__
                        self._logger.warning(
                            "Grade sweep failed for member",
                            member_id=str(member_id),
                            error=summary.failures[str(member_id)],
                        )
                        continue
                    if result.changed:
                        summary.updated += 1
                cursor = member_ids[-1]
                if len(member_ids) < self.batch_size:
                    break
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                summary = await self.run_once()
                self._logger.info(
                    "Grade sweep iteration",
                    scanned=summary.scanned,
                    updated=summary.updated,
                    failed=summary.failed,
                )
            except Exception as exc:  # pragma: no cover
                self._logger.exception("Grade sweep iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def _build_reconciler(self, session: AsyncSession) -> GradeReconciler:
        if self._reconciler_factory:
            return self._reconciler_factory(session)
        return GradeReconciler(session)

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["GradeSweepSummary", "GradeSweepWorker"]
