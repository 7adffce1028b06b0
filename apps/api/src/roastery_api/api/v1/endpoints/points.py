"""Point ledger endpoints: grants, balance and history."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.api.dependencies.security import require_internal_api_key
from roastery_api.api.dependencies.session import require_actor, require_admin
from roastery_api.api.errors import http_error, internal_error
from roastery_api.db.session import get_session
from roastery_api.models.point_ledger import PointLedgerEntry
from roastery_api.schemas.common import ErrorResponse
from roastery_api.schemas.loyalty import (
    PointBalanceResponse,
    PointEntryResponse,
    PointGrantAllRequest,
    PointGrantAllResponse,
    PointGrantFailureResponse,
    PointGrantRequest,
    PointGrantResponse,
    PointHistoryResponse,
)
from roastery_api.services.errors import CommerceError, NotFoundError
from roastery_api.services.loyalty import PointLedger, RewardIssuer
from roastery_api.services.orders.state_machine import Actor

router = APIRouter(
    prefix="/points",
    tags=["points"],
    responses={
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    },
)


@router.post(
    "/grant",
    response_model=PointGrantResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_internal_api_key)],
)
async def grant_points(
    payload: PointGrantRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> PointGrantResponse:
    """Manually credit points to one member."""

    try:
        result = await RewardIssuer(db).grant_manual(payload.member_id, payload.amount, payload.reason)
        balance = await PointLedger(db).balance(payload.member_id)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Manual point grant failed", member_id=str(payload.member_id), error=str(exc))
        raise internal_error("Failed to grant points") from exc

    logger.info(
        "Manual point grant",
        member_id=str(payload.member_id),
        amount=payload.amount,
        actor_id=actor.actor_id,
    )
    return PointGrantResponse(entry=_entry_to_response(result.entry), balance=balance)


@router.post(
    "/grant-all",
    response_model=PointGrantAllResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def grant_points_to_all(
    payload: PointGrantAllRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> PointGrantAllResponse:
    """Credit every active member; failures are reported per member."""

    try:
        report = await RewardIssuer(db).grant_all(payload.amount, payload.reason)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Bulk point grant failed", error=str(exc))
        raise internal_error("Failed to grant points") from exc

    logger.info(
        "Bulk point grant requested",
        amount=payload.amount,
        succeeded=report.success_count,
        failed=len(report.failures),
        actor_id=actor.actor_id,
    )
    return PointGrantAllResponse(
        success_count=report.success_count,
        failures=[
            PointGrantFailureResponse(member_id=failure.member_id, kind=failure.kind, message=failure.message)
            for failure in report.failures
        ],
    )


@router.get("/balance", response_model=PointBalanceResponse)
async def get_balance(
    member_id: UUID | None = Query(None, alias="memberId"),
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> PointBalanceResponse:
    try:
        target = _resolve_member(member_id, actor)
        balance = await PointLedger(db).balance(target)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    return PointBalanceResponse(member_id=target, balance=balance)


@router.get("/history", response_model=PointHistoryResponse)
async def get_history(
    member_id: UUID | None = Query(None, alias="memberId"),
    page: int = Query(1),
    limit: int | None = Query(None),
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> PointHistoryResponse:
    """Reverse-chronological ledger page for a member."""

    try:
        target = _resolve_member(member_id, actor)
        history = await PointLedger(db).history(target, page=page, limit=limit)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    return PointHistoryResponse(
        entries=[_entry_to_response(entry) for entry in history.entries],
        total=history.total,
        total_pages=history.total_pages,
        current_page=history.current_page,
        limit=history.limit,
    )


def _resolve_member(member_id: UUID | None, actor: Actor) -> UUID:
    if member_id is None:
        return actor.member_id
    if not actor.is_admin and member_id != actor.member_id:
        raise NotFoundError(f"Member {member_id} not found", member_id=str(member_id))
    return member_id


def _entry_to_response(entry: PointLedgerEntry) -> PointEntryResponse:
    return PointEntryResponse(
        id=entry.id,
        member_id=entry.member_id,
        amount=entry.amount,
        reason=entry.reason,
        order_id=entry.order_id,
        created_at=entry.created_at,
    )
