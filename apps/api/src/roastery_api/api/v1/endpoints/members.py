"""Member grade lookup, reconciled on read."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.api.dependencies.session import require_actor
from roastery_api.api.errors import http_error, internal_error
from roastery_api.db.session import get_session
from roastery_api.schemas.loyalty import MemberGradeResponse
from roastery_api.services.errors import CommerceError, NotFoundError
from roastery_api.services.loyalty import GradeReconciler
from roastery_api.services.orders.state_machine import Actor

router = APIRouter(prefix="/members", tags=["members"])


@router.get("/{member_id}/grade", response_model=MemberGradeResponse)
async def get_member_grade(
    member_id: UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> MemberGradeResponse:
    """Reconcile the member's grade against valid spend, then return it."""

    try:
        if not actor.is_admin and member_id != actor.member_id:
            raise NotFoundError(f"Member {member_id} not found", member_id=str(member_id))
        result = await GradeReconciler(db).reconcile(member_id)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Grade lookup failed", member_id=str(member_id), error=str(exc))
        raise internal_error("Failed to resolve member grade") from exc

    return MemberGradeResponse(
        member_id=member_id,
        grade=result.grade.value,
        previous_grade=result.previous_grade.value,
        changed=result.changed,
        valid_spend=result.valid_spend,
    )
