"""Dispatch use-cases: reserve stock onto an order, move it to the truck, receive it at site."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Sequence

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import DomainError, items_unavailable
from ..models import (
    DispatchDetail,
    DispatchOrder,
    DispatchOrderItem,
    DispatchTrackingLog,
    ElementType,
    PrecastStock,
    Project,
    StockErected,
    StockErectedLog,
    User,
    VehicleDetails,
)
from ..schemas import (
    REQUIRED_VEHICLE_FIELDS,
    DispatchCreated,
    DispatchItemOut,
    DispatchOrderCreate,
    DispatchOrderOut,
    DispatchReceived,
    DispatchTransitioned,
    TrackingLogOut,
    TrackingLogsOut,
)
from ..services.dispatch_rules import (
    LOCATION_ERECTION_SITE,
    LOCATION_STOCKYARD,
    LOCATION_TRUCK,
    REMARKS_DISPATCHED,
    REMARKS_IN_TRANSIT,
    REMARKS_RECEIVED,
    STATUS_ACCEPTED,
    STATUS_DISPATCHED,
    STATUS_IN_TRANSIT,
    dedupe_preserving_order,
    is_valid_order_number,
    latest_detail_by_order,
    unavailable_element_ids,
    validate_dispatch_transition,
)
from ..services.erection_rules import LOG_RECEIVED
from ..services.lifecycle_rules import (
    ELEMENT_STATUS_IN_ERECTION,
    IN_STOCKYARD,
    IN_TRANSIT,
    RECEIVED_AT_SITE,
    RESERVED_FOR_DISPATCH,
)
from .common import (
    KIND_ACTIVITY,
    KIND_PROJECT_NOTIFICATION,
    UseCaseHooks,
    activity_payload,
    display_name,
    emit_after_commit,
)
from .stock_registry import advance_stock_state, load_project, set_element_status

logger = logging.getLogger(__name__)

VEHICLE_COLUMN_FOR_FIELD: dict[str, str] = {"driver_phone_no": "driver_contact_no"}


def load_vehicle(db: Session, vehicle_id: int) -> VehicleDetails | None:
    return db.query(VehicleDetails).filter(VehicleDetails.id == vehicle_id).first()


def upsert_vehicle(db: Session, *, data: DispatchOrderCreate, at: datetime) -> VehicleDetails:
    """Find the vehicle by number and refresh its details, or insert it."""
    vehicle = db.query(VehicleDetails).filter(
        VehicleDetails.vehicle_number == data.vehicle_number
    ).with_for_update().first()
    if vehicle is None:
        vehicle = VehicleDetails(vehicle_number=data.vehicle_number, status="active", created_at=at)
        db.add(vehicle)
    for field in REQUIRED_VEHICLE_FIELDS + ("emergency_contact_phone_no",):
        if field == "vehicle_number":
            continue
        value = getattr(data, field)
        if value is not None:
            setattr(vehicle, VEHICLE_COLUMN_FOR_FIELD.get(field, field), value)
    vehicle.updated_at = at
    db.flush()
    return vehicle


def reserve_stock(db: Session, *, project_id: int, element_ids: Sequence[int], at: datetime) -> list[int]:
    """Claim stockyard rows for dispatch in one conditional UPDATE; returns the claimed element ids."""
    if not element_ids:
        return []
    stmt = (
        update(PrecastStock)
        .where(
            PrecastStock.project_id == project_id,
            PrecastStock.element_id.in_(list(element_ids)),
            PrecastStock.lifecycle_state == IN_STOCKYARD,
        )
        .values(lifecycle_state=RESERVED_FOR_DISPATCH, dispatch_start=at, updated_at=at)
        .returning(PrecastStock.element_id)
        .execution_options(synchronize_session=False)
    )
    return list(db.execute(stmt).scalars().all())


def order_number_taken(db: Session, order_number: str) -> bool:
    return db.query(DispatchOrder.id).filter(DispatchOrder.order_number == order_number).first() is not None


def load_order(db: Session, order_id: int, *, lock: bool = False) -> DispatchOrder | None:
    query = db.query(DispatchOrder).filter(DispatchOrder.id == order_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def latest_detail(db: Session, order_id: int) -> DispatchDetail | None:
    return db.query(DispatchDetail).filter(
        DispatchDetail.dispatch_order_id == order_id
    ).order_by(DispatchDetail.id.desc()).first()


def order_element_ids(db: Session, order_id: int) -> list[int]:
    rows = db.query(DispatchOrderItem.element_id).filter(
        DispatchOrderItem.dispatch_order_id == order_id
    ).order_by(DispatchOrderItem.id).all()
    return [row[0] for row in rows]


def erection_requests_for(db: Session, *, project_id: int, element_ids: Sequence[int]) -> list[StockErected]:
    if not element_ids:
        return []
    return db.query(StockErected).filter(
        StockErected.project_id == project_id,
        StockErected.element_id.in_(list(element_ids)),
    ).order_by(StockErected.id).all()


def list_orders(db: Session, project_id: int) -> list[DispatchOrder]:
    return db.query(DispatchOrder).filter(
        DispatchOrder.project_id == project_id
    ).order_by(DispatchOrder.dispatch_date.desc(), DispatchOrder.id.desc()).all()


def list_details(db: Session, order_ids: Sequence[int]) -> list[DispatchDetail]:
    if not order_ids:
        return []
    return db.query(DispatchDetail).filter(
        DispatchDetail.dispatch_order_id.in_(list(order_ids))
    ).order_by(DispatchDetail.id).all()


def list_items(db: Session, order_ids: Sequence[int]) -> list:
    if not order_ids:
        return []
    return db.query(
        DispatchOrderItem.dispatch_order_id,
        DispatchOrderItem.element_id,
        PrecastStock.element_type,
        PrecastStock.weight,
        ElementType.element_type_name,
    ).outerjoin(
        PrecastStock, PrecastStock.element_id == DispatchOrderItem.element_id,
    ).outerjoin(
        ElementType, ElementType.element_type_id == PrecastStock.element_type_id,
    ).filter(
        DispatchOrderItem.dispatch_order_id.in_(list(order_ids))
    ).order_by(DispatchOrderItem.id).all()


def list_tracking_logs(db: Session, project_id: int) -> list[DispatchTrackingLog]:
    return db.query(DispatchTrackingLog).join(
        DispatchOrder, DispatchOrder.order_number == DispatchTrackingLog.order_number,
    ).filter(
        DispatchOrder.project_id == project_id
    ).order_by(DispatchTrackingLog.status_timestamp.desc(), DispatchTrackingLog.id.desc()).all()


@dataclass(frozen=True)
class DispatchHooks(UseCaseHooks):
    load_project: Callable[[Session, int], Project | None] = load_project
    load_vehicle: Callable[[Session, int], VehicleDetails | None] = load_vehicle
    upsert_vehicle: Callable[..., VehicleDetails] = upsert_vehicle
    reserve_stock: Callable[..., list[int]] = reserve_stock
    order_number_taken: Callable[[Session, str], bool] = order_number_taken
    load_order: Callable[..., DispatchOrder | None] = load_order
    latest_detail: Callable[[Session, int], DispatchDetail | None] = latest_detail
    order_element_ids: Callable[[Session, int], list[int]] = order_element_ids
    advance_stock_state: Callable[..., list] = advance_stock_state
    erection_requests_for: Callable[..., list[StockErected]] = erection_requests_for
    set_element_status: Callable[..., None] = set_element_status
    list_orders: Callable[[Session, int], list[DispatchOrder]] = list_orders
    list_details: Callable[[Session, Sequence[int]], list[DispatchDetail]] = list_details
    list_items: Callable[[Session, Sequence[int]], list] = list_items
    list_tracking_logs: Callable[[Session, int], list[DispatchTrackingLog]] = list_tracking_logs


def _missing_vehicle_fields(data: DispatchOrderCreate) -> list[str]:
    missing = []
    for field in REQUIRED_VEHICLE_FIELDS:
        value = getattr(data, field)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)
    return missing


def _resolve_vehicle(db: Session, data: DispatchOrderCreate, hooks: DispatchHooks, at: datetime) -> VehicleDetails:
    if data.vehicle_id is not None:
        vehicle = hooks.load_vehicle(db, data.vehicle_id)
        if vehicle is None:
            raise DomainError(code="VEHICLE_NOT_FOUND", http_status=404, message="Vehicle not found")
        return vehicle

    missing = _missing_vehicle_fields(data)
    if missing:
        raise DomainError(
            code="VEHICLE_DETAILS_REQUIRED",
            http_status=400,
            message="Vehicle details are required",
            details={"missing_fields": missing},
        )
    return hooks.upsert_vehicle(db, data=data, at=at)


def _allocate_order_number(db: Session, hooks: DispatchHooks) -> str:
    for _ in range(settings.ORDER_NUMBER_MAX_ATTEMPTS):
        candidate = hooks.generate_order_number()
        if not is_valid_order_number(candidate):
            logger.warning("Discarding malformed order number %r", candidate)
            continue
        if not hooks.order_number_taken(db, candidate):
            return candidate
        logger.info("Order number %s already taken, retrying", candidate)
    db.rollback()
    raise DomainError(
        code="ORDER_NUMBER_EXHAUSTED",
        http_status=500,
        message="Failed to allocate a unique order number",
    )


def _transition_error(error: ValueError) -> DomainError:
    return DomainError(code="INVALID_DISPATCH_TRANSITION", http_status=400, message=str(error))


def _load_order_with_detail(
    db: Session, order_id: int, hooks: DispatchHooks
) -> tuple[DispatchOrder, DispatchDetail]:
    order = hooks.load_order(db, order_id, lock=True)
    if order is None:
        raise DomainError(code="DISPATCH_ORDER_NOT_FOUND", http_status=404, message="Dispatch order not found")
    detail = hooks.latest_detail(db, order.id)
    if detail is None:
        raise DomainError(code="DISPATCH_DETAILS_NOT_FOUND", http_status=404, message="Dispatch details not found")
    return order, detail


def _notify(hooks: DispatchHooks, *, project_id: int, message: str, reference: str) -> None:
    emit_after_commit(
        hooks,
        KIND_PROJECT_NOTIFICATION,
        {
            "project_id": project_id,
            "message": message,
            "action": f"{settings.FRONTEND_BASE_URL}/project/{project_id}/dispatch-log",
            "reference": reference,
        },
    )


def create_dispatch_use_case(
    *,
    data: DispatchOrderCreate,
    current_user: User,
    db: Session,
    hooks: DispatchHooks,
) -> DispatchCreated:
    project = hooks.load_project(db, data.project_id)
    if project is None:
        raise DomainError(code="PROJECT_NOT_FOUND", http_status=404, message="Project not found")

    at = hooks.now_utc()
    element_ids = dedupe_preserving_order(data.items)
    vehicle = _resolve_vehicle(db, data, hooks, at)

    reserved = hooks.reserve_stock(db, project_id=data.project_id, element_ids=element_ids, at=at)
    unavailable = unavailable_element_ids(requested=element_ids, reserved=reserved)
    if unavailable:
        db.rollback()
        logger.warning("Dispatch for project %s rejected, unavailable elements %s", data.project_id, unavailable)
        raise items_unavailable(unavailable)

    order_number = _allocate_order_number(db, hooks)
    order = DispatchOrder(
        order_number=order_number,
        project_id=data.project_id,
        dispatch_date=data.dispatch_date or at,
        status=STATUS_DISPATCHED,
        created_by=current_user.id,
        received_by=data.recieve_by,
    )
    db.add(order)
    db.flush()

    detail = DispatchDetail(
        dispatch_order_id=order.id,
        vehicle_id=vehicle.id,
        driver_name=vehicle.driver_name,
        departure_time=at,
        current_status=STATUS_DISPATCHED,
        updated_at=at,
    )
    db.add(detail)
    db.add_all([DispatchOrderItem(dispatch_order_id=order.id, element_id=element_id) for element_id in element_ids])
    db.add(
        DispatchTrackingLog(
            order_number=order_number,
            status=STATUS_DISPATCHED,
            location=LOCATION_STOCKYARD,
            remarks=REMARKS_DISPATCHED,
            status_timestamp=at,
        )
    )
    db.flush()
    db.commit()

    logger.info("Dispatch order %s created with %s items for project %s", order_number, len(element_ids), project.project_id)
    emit_after_commit(
        hooks,
        KIND_ACTIVITY,
        activity_payload(
            hooks,
            user=current_user,
            event_context="Dispatch",
            event_name="POST",
            description=f"Dispatch order {order_number} created",
            project_id=data.project_id,
        ),
    )
    _notify(
        hooks,
        project_id=data.project_id,
        message=f"Dispatch order received: {order_number} for project: {project.name}",
        reference=f"dispatch_created:{order_number}",
    )
    return DispatchCreated(
        message="Order created successfully!",
        dispatch_id=detail.id,
        order_id=order.id,
        order_number=order_number,
        project_id=data.project_id,
        vehicle_id=vehicle.id,
    )


def transition_to_in_transit_use_case(
    *,
    order_id: int,
    current_user: User,
    db: Session,
    hooks: DispatchHooks,
) -> DispatchTransitioned:
    order, detail = _load_order_with_detail(db, order_id, hooks)
    try:
        validate_dispatch_transition(current_status=detail.current_status, next_status=STATUS_IN_TRANSIT)
    except ValueError as error:
        raise _transition_error(error) from error

    at = hooks.now_utc()
    detail.current_status = STATUS_IN_TRANSIT
    detail.updated_at = at
    order.status = STATUS_IN_TRANSIT
    hooks.advance_stock_state(
        db,
        project_id=order.project_id,
        element_ids=hooks.order_element_ids(db, order.id),
        target=IN_TRANSIT,
        source_states=(RESERVED_FOR_DISPATCH,),
        at=at,
    )
    db.add(
        DispatchTrackingLog(
            order_number=order.order_number,
            status=STATUS_IN_TRANSIT,
            location=LOCATION_TRUCK,
            remarks=REMARKS_IN_TRANSIT.format(actor=display_name(current_user)),
            status_timestamp=at,
        )
    )
    db.commit()

    logger.info("Dispatch order %s is in transit", order.order_number)
    emit_after_commit(
        hooks,
        KIND_ACTIVITY,
        activity_payload(
            hooks,
            user=current_user,
            event_context="Dispatch",
            event_name="PUT",
            description=f"Dispatch order {order.order_number} marked In Transit",
            project_id=order.project_id,
        ),
    )
    _notify(
        hooks,
        project_id=order.project_id,
        message=f"Dispatch order {order.order_number} is in transit",
        reference=f"dispatch_in_transit:{order.order_number}",
    )
    return DispatchTransitioned(
        message="Dispatch status updated to in-transit successfully!",
        order_id=order.id,
        order_number=order.order_number,
        status=STATUS_IN_TRANSIT,
    )


def receive_dispatch_use_case(
    *,
    order_id: int,
    current_user: User,
    db: Session,
    hooks: DispatchHooks,
) -> DispatchReceived:
    order, detail = _load_order_with_detail(db, order_id, hooks)
    try:
        validate_dispatch_transition(current_status=detail.current_status, next_status=STATUS_ACCEPTED)
    except ValueError as error:
        raise _transition_error(error) from error

    at = hooks.now_utc()
    actor = display_name(current_user)
    detail.current_status = STATUS_ACCEPTED
    detail.updated_at = at
    order.status = STATUS_ACCEPTED
    order.received_by = current_user.id
    order.received_at = at

    element_ids = hooks.order_element_ids(db, order.id)
    # rows already confirmed one by one at site keep their state
    hooks.advance_stock_state(
        db,
        project_id=order.project_id,
        element_ids=element_ids,
        target=RECEIVED_AT_SITE,
        source_states=(RESERVED_FOR_DISPATCH, IN_TRANSIT),
        at=at,
        extra_values={"dispatch_end": at},
    )
    for request in hooks.erection_requests_for(db, project_id=order.project_id, element_ids=element_ids):
        request.received_in_erection = True
        request.action_approve_or_reject = at
        db.add(
            StockErectedLog(
                stock_erected_id=request.id,
                element_id=request.element_id,
                project_id=order.project_id,
                status=LOG_RECEIVED,
                acted_by=current_user.id,
                comments=f"Received with dispatch order {order.order_number}",
                action_timestamp=at,
            )
        )
    hooks.set_element_status(db, element_ids=element_ids, status=ELEMENT_STATUS_IN_ERECTION)
    db.add(
        DispatchTrackingLog(
            order_number=order.order_number,
            status=STATUS_ACCEPTED,
            location=LOCATION_ERECTION_SITE,
            remarks=REMARKS_RECEIVED.format(actor=actor),
            status_timestamp=at,
        )
    )
    db.commit()

    logger.info("Dispatch order %s received by %s", order.order_number, current_user.id)
    emit_after_commit(
        hooks,
        KIND_ACTIVITY,
        activity_payload(
            hooks,
            user=current_user,
            event_context="Dispatch",
            event_name="PUT",
            description=f"Dispatch order {order.order_number} received at erection site",
            project_id=order.project_id,
        ),
    )
    _notify(
        hooks,
        project_id=order.project_id,
        message=f"Dispatch order {order.order_number} received at erection site",
        reference=f"dispatch_received:{order.order_number}",
    )
    return DispatchReceived(message="Order received successfully!", order_id=order.id, received_by=current_user.id)


def _order_out(order: DispatchOrder, detail: DispatchDetail | None, items: Iterable) -> DispatchOrderOut:
    return DispatchOrderOut(
        order_id=order.id,
        order_number=order.order_number,
        project_id=order.project_id,
        dispatch_date=order.dispatch_date,
        status=order.status,
        received_by=order.received_by,
        received_at=order.received_at,
        created_at=order.created_at,
        dispatch_id=detail.id if detail else None,
        current_status=detail.current_status if detail else None,
        vehicle_id=detail.vehicle_id if detail else None,
        driver_name=detail.driver_name if detail else None,
        departure_time=detail.departure_time if detail else None,
        items=[
            DispatchItemOut(
                element_id=item.element_id,
                element_type=item.element_type,
                weight=float(item.weight) if item.weight is not None else None,
                element_type_name=item.element_type_name,
            )
            for item in items
        ],
    )


def _orders_out(db: Session, orders: Sequence[DispatchOrder], hooks: DispatchHooks) -> list[DispatchOrderOut]:
    order_ids = [order.id for order in orders]
    details = latest_detail_by_order(hooks.list_details(db, order_ids))
    items_by_order: dict[int, list] = {}
    for item in hooks.list_items(db, order_ids):
        items_by_order.setdefault(item.dispatch_order_id, []).append(item)
    return [_order_out(order, details.get(order.id), items_by_order.get(order.id, [])) for order in orders]


def get_dispatch_orders_by_project_use_case(
    *,
    project_id: int,
    db: Session,
    hooks: DispatchHooks,
) -> list[DispatchOrderOut]:
    return _orders_out(db, hooks.list_orders(db, project_id), hooks)


def get_dispatch_order_use_case(
    *,
    order_id: int,
    db: Session,
    hooks: DispatchHooks,
) -> DispatchOrderOut:
    order = hooks.load_order(db, order_id)
    if order is None:
        raise DomainError(code="DISPATCH_ORDER_NOT_FOUND", http_status=404, message="Dispatch order not found")
    return _orders_out(db, [order], hooks)[0]


def get_tracking_logs_use_case(
    *,
    project_id: int,
    db: Session,
    hooks: DispatchHooks,
) -> TrackingLogsOut:
    logs = [TrackingLogOut.model_validate(log) for log in hooks.list_tracking_logs(db, project_id)]
    return TrackingLogsOut(project_id=project_id, logs=logs, count=len(logs))
