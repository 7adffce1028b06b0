"""Session-aware dependencies resolving the acting member from forwarded headers."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.api.errors import http_error, malformed_header
from roastery_api.db.session import get_session
from roastery_api.models.member import Member, MemberRoleEnum, MemberStatusEnum
from roastery_api.services.errors import ForbiddenError, NotFoundError, UnauthorizedError
from roastery_api.services.orders.state_machine import Actor


async def require_session_member(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> Member:
    """Resolve the authenticated member from the identity collaborator's headers."""

    if not session_user:
        raise http_error(UnauthorizedError("Missing session user context"))

    try:
        member_id = UUID(session_user)
    except ValueError as error:
        raise malformed_header("Invalid session user identifier") from error

    stmt = select(Member).where(Member.id == member_id)
    result = await db.execute(stmt)
    member = result.scalar_one_or_none()
    if member is None or member.status == MemberStatusEnum.WITHDRAWN:
        raise http_error(NotFoundError("Session user not found", member_id=str(member_id)))

    return member


async def require_actor(
    session_role: str | None = Header(None, alias="X-Session-Role"),
    member: Member = Depends(require_session_member),
) -> Actor:
    """Build the acting identity; a claimed role must match the stored one."""

    stored_role = MemberRoleEnum(member.role)
    if session_role:
        try:
            claimed_role = MemberRoleEnum(session_role.strip().upper())
        except ValueError as error:
            raise malformed_header("Invalid session role") from error
        if claimed_role == MemberRoleEnum.ADMIN and stored_role != MemberRoleEnum.ADMIN:
            raise http_error(ForbiddenError("Session role does not match member role"))
        stored_role = claimed_role

    if stored_role == MemberRoleEnum.ADMIN:
        return Actor.admin(member.id)
    return Actor.member(member.id)


async def require_admin(actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.is_admin:
        raise http_error(ForbiddenError("Administrator role required"))
    return actor
