"""Order status, correction and timeline endpoints."""

from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.api.dependencies.security import require_internal_api_key
from roastery_api.api.dependencies.session import require_actor, require_admin
from roastery_api.api.errors import http_error, internal_error
from roastery_api.db.session import get_session
from roastery_api.models.order import Order, OrderStatusEnum
from roastery_api.models.order_state_event import OrderStateEvent
from roastery_api.schemas.common import ErrorResponse
from roastery_api.schemas.orders import (
    BulkEditRequest,
    BulkFailureResponse,
    BulkReportResponse,
    BulkStatusRequest,
    GradeSummary,
    OrderCorrectionRequest,
    OrderCorrectionResponse,
    OrderItemCorrectionPayload,
    OrderItemResponse,
    OrderListResponse,
    OrderResponse,
    OrderStateEventResponse,
    OrderStatusUpdate,
    OrderTransitionResponse,
    RewardSummary,
)
from roastery_api.services.errors import CommerceError
from roastery_api.services.orders.bulk import (
    BulkOperationCoordinator,
    BulkReport,
    ItemCorrectionOperation,
    StatusTransitionOperation,
)
from roastery_api.services.orders.editing import ItemCorrection, OrderEditor
from roastery_api.services.orders.listing import OrderQueryService
from roastery_api.services.orders.state_machine import Actor, OrderStateMachine, TransitionResult, coerce_status

router = APIRouter(
    prefix="/orders",
    tags=["orders"],
    responses={
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    },
)


@router.get("", response_model=OrderListResponse)
async def list_orders(
    status_filter: Optional[List[str]] = Query(None, alias="status"),
    member_id: Optional[UUID] = Query(None, alias="memberId"),
    view: Literal["orders", "cancelled"] = Query("orders"),
    page: int = Query(1),
    limit: int = Query(20),
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> OrderListResponse:
    """List orders. Admins see everything; members see their own history."""

    try:
        statuses = [coerce_status(value) for value in status_filter or []]
        result = await OrderQueryService(db).list_orders(
            actor,
            statuses=statuses,
            member_id=member_id,
            view=view,
            page=page,
            limit=limit,
        )
        return OrderListResponse(
            orders=[_order_to_response(order) for order in result.orders],
            total=result.total,
            total_pages=result.total_pages,
            current_page=result.current_page,
            limit=result.limit,
        )
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Failed to list orders", error=str(exc))
        raise internal_error("Failed to list orders") from exc


@router.post(
    "/bulk/status",
    response_model=BulkReportResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def bulk_update_status(
    payload: BulkStatusRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> BulkReportResponse:
    """Apply one status to many orders, reporting per-order outcomes."""

    try:
        operation = StatusTransitionOperation(target_status=payload.status, actor=actor)
        report = await BulkOperationCoordinator(db).apply_bulk(payload.order_ids, operation, mode=payload.mode)
        return _bulk_to_response(report)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Bulk status update failed", error=str(exc))
        raise internal_error("Failed to update order statuses") from exc


@router.post(
    "/bulk/edit",
    response_model=BulkReportResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def bulk_correct_items(
    payload: BulkEditRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> BulkReportResponse:
    """Apply item corrections to many orders, reporting per-order outcomes."""

    corrections_by_order: dict[UUID, list[ItemCorrection]] = {}
    for edit in payload.edits:
        corrections_by_order.setdefault(edit.order_id, []).extend(_to_corrections(edit.order_items))

    try:
        operation = ItemCorrectionOperation(corrections_by_order=corrections_by_order, actor=actor)
        report = await BulkOperationCoordinator(db).apply_bulk(
            [edit.order_id for edit in payload.edits],
            operation,
            mode=payload.mode,
        )
        return _bulk_to_response(report)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Bulk item correction failed", error=str(exc))
        raise internal_error("Failed to correct orders") from exc


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    try:
        order = await OrderQueryService(db).get_order(order_id, actor)
        return _order_to_response(order)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Failed to retrieve order", order_id=str(order_id), error=str(exc))
        raise internal_error("Failed to retrieve order") from exc


@router.post("/{order_id}/status", response_model=OrderTransitionResponse)
async def update_order_status(
    order_id: UUID,
    payload: OrderStatusUpdate,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> OrderTransitionResponse:
    """Move an order to a new status.

    Members may cancel before shipping or confirm purchase after delivery;
    admins may set any status. Side-effect failures come back as warnings.
    """

    try:
        result = await OrderStateMachine(db).transition(order_id, payload.status, actor, notes=payload.notes)
        return _transition_to_response(result)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Failed to update order status", order_id=str(order_id), error=str(exc))
        raise internal_error("Failed to update order status") from exc


@router.post(
    "/{order_id}",
    response_model=OrderCorrectionResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def correct_order_items(
    order_id: UUID,
    payload: OrderCorrectionRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> OrderCorrectionResponse:
    """Correct item prices or quantities; the order total is recomputed."""

    try:
        result = await OrderEditor(db).correct_items(order_id, _to_corrections(payload.order_items), actor)
        return OrderCorrectionResponse(
            order=_order_to_response(result.order),
            previous_total=result.previous_total,
            new_total=result.new_total,
        )
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Failed to correct order", order_id=str(order_id), error=str(exc))
        raise internal_error("Failed to correct order") from exc


@router.delete(
    "/{order_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    dependencies=[Depends(require_internal_api_key)],
)
async def delete_order(
    order_id: UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> Response:
    try:
        await OrderEditor(db).delete_order(order_id, actor)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Failed to delete order", order_id=str(order_id), error=str(exc))
        raise internal_error("Failed to delete order") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{order_id}/state-events", response_model=List[OrderStateEventResponse])
async def list_order_state_events(
    order_id: UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> List[OrderStateEventResponse]:
    """Return the audit log for an order, newest first."""

    try:
        events = await OrderStateMachine(db).list_events(order_id, actor)
    except (CommerceError, SQLAlchemyError) as exc:
        raise http_error(exc) from exc
    return [_serialize_state_event(event) for event in events]


def _to_corrections(items: List[OrderItemCorrectionPayload]) -> list[ItemCorrection]:
    return [
        ItemCorrection(item_id=item.id, sale_price=item.sale_price, quantity=item.quantity)
        for item in items
    ]


def _order_to_response(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        member_id=order.member_id,
        status=order.status.value,
        total_price=order.total_price,
        used_point=order.used_point,
        cancellable=order.status in OrderStatusEnum.member_cancellable(),
        reviewable=order.status.is_reviewable,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[
            OrderItemResponse(
                id=item.id,
                product_id=item.product_id,
                option_id=item.option_id,
                product_name=item.product_name,
                sale_price=item.sale_price,
                quantity=item.quantity,
            )
            for item in order.items
        ],
    )


def _transition_to_response(result: TransitionResult) -> OrderTransitionResponse:
    reward = None
    if result.reward is not None:
        reward = RewardSummary(amount=result.reward.amount, created=result.reward.created)
    grade = None
    if result.grade is not None:
        grade = GradeSummary(
            grade=result.grade.grade.value,
            previous_grade=result.grade.previous_grade.value,
            changed=result.grade.changed,
            valid_spend=result.grade.valid_spend,
        )
    return OrderTransitionResponse(
        order=_order_to_response(result.order),
        previous_status=result.previous_status.value,
        changed=result.changed,
        reward=reward,
        grade=grade,
        warnings=result.warnings,
    )


def _bulk_to_response(report: BulkReport) -> BulkReportResponse:
    return BulkReportResponse(
        mode=report.mode.value,
        aborted=report.aborted,
        succeeded=report.succeeded,
        failed=[
            BulkFailureResponse(id=failure.id, kind=failure.kind, message=failure.message)
            for failure in report.failed
        ],
        warnings={str(order_id): warnings for order_id, warnings in report.warnings.items()},
    )


def _serialize_state_event(event: OrderStateEvent) -> OrderStateEventResponse:
    return OrderStateEventResponse(
        id=event.id,
        event_type=event.event_type.value,
        actor_type=event.actor_type.value if event.actor_type else None,
        actor_id=event.actor_id,
        from_status=event.from_status,
        to_status=event.to_status,
        notes=event.notes,
        metadata=event.metadata_json if isinstance(event.metadata_json, dict) else {},
        created_at=event.created_at,
    )
