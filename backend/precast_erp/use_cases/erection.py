"""Erection use-cases: raise requests against stock, decide them, receive and erect at site."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

from sqlalchemy import update
from sqlalchemy.orm import Session, aliased

from ..config import settings
from ..domain_errors import DomainError
from ..models import (
    DispatchOrder,
    DispatchOrderItem,
    DispatchTrackingLog,
    Element,
    ElementType,
    Precast,
    PrecastStock,
    Project,
    StockErected,
    StockErectedLog,
    User,
)
from ..schemas import (
    DecisionResult,
    ErectionCountResult,
    ErectionDecision,
    ErectionLogOut,
    ErectionRequestOut,
    FinalizeErectedRequest,
    RaisedLineOut,
    RaiseRequestLine,
    RaiseRequestResult,
    SiteReceiptRequest,
)
from ..services.dispatch_rules import (
    LOCATION_ERECTION_SITE,
    REMARKS_ELEMENT_RECEIVED,
    STATUS_RECEIVED,
    dedupe_preserving_order,
)
from ..services.erection_rules import (
    APPROVED_COMMENT,
    INITIAL_REQUEST_COMMENT,
    LOG_APPROVED,
    LOG_ERECTED,
    LOG_PENDING,
    LOG_RECEIVED,
    LOG_REJECTED,
    ensure_reject_comments,
    flatten_raise_request,
    split_known_ids,
)
from ..services.lifecycle_rules import (
    ELEMENT_STATUS_DISPATCH,
    ELEMENT_STATUS_ERECTED,
    ELEMENT_STATUS_IN_ERECTION,
    ERECTED,
    RECEIVED_AT_SITE,
    source_states_for,
    validate_lifecycle_transition,
)
from ..services.precast_hierarchy import location_labels
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

REQUEST_STATUS_FILTERS = ("all", "pending", "approved", "rejected")


def select_requestable_stock(
    db: Session,
    *,
    project_id: int,
    floor_id: int,
    element_type_id: int,
    limit: int,
) -> list[PrecastStock]:
    """Oldest unrequested stock rows for one floor and element type."""
    return db.query(PrecastStock).join(
        Element, Element.id == PrecastStock.element_id,
    ).filter(
        PrecastStock.project_id == project_id,
        PrecastStock.target_location == floor_id,
        PrecastStock.element_type_id == element_type_id,
        PrecastStock.order_by_erection.is_(False),
        Element.disable.is_(False),
    ).order_by(PrecastStock.id).limit(limit).all()


def claim_for_erection(db: Session, stock_id: int) -> bool:
    stmt = (
        update(PrecastStock)
        .where(PrecastStock.id == stock_id, PrecastStock.order_by_erection.is_(False))
        .values(order_by_erection=True)
        .returning(PrecastStock.id)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).scalar() is not None


def requests_for_elements(
    db: Session,
    *,
    element_ids: Sequence[int],
    project_id: int | None = None,
    approved_only: bool = False,
) -> list[StockErected]:
    if not element_ids:
        return []
    query = db.query(StockErected).filter(StockErected.element_id.in_(list(element_ids)))
    if project_id is not None:
        query = query.filter(StockErected.project_id == project_id)
    if approved_only:
        query = query.filter(StockErected.approved_status.is_(True))
    return query.order_by(StockErected.id).all()


def pending_log(db: Session, stock_erected_id: int) -> StockErectedLog | None:
    return db.query(StockErectedLog).filter(
        StockErectedLog.stock_erected_id == stock_erected_id,
        StockErectedLog.status == LOG_PENDING,
    ).order_by(StockErectedLog.id.desc()).first()


def stock_states(db: Session, *, project_id: int, element_ids: Sequence[int]) -> dict[int, str]:
    rows = db.query(PrecastStock.element_id, PrecastStock.lifecycle_state).filter(
        PrecastStock.project_id == project_id,
        PrecastStock.element_id.in_(list(element_ids)),
    ).all()
    return {row[0]: row[1] for row in rows}


def dispatch_orders_for(db: Session, element_ids: Sequence[int]) -> dict[int, str]:
    """Latest dispatch order number per element, for elements that were dispatched."""
    rows = db.query(DispatchOrderItem.element_id, DispatchOrder.order_number).join(
        DispatchOrder, DispatchOrder.id == DispatchOrderItem.dispatch_order_id,
    ).filter(
        DispatchOrderItem.element_id.in_(list(element_ids))
    ).order_by(DispatchOrder.id).all()
    return {row[0]: row[1] for row in rows}


def load_request_rows(db: Session, *, project_id: int, status: str) -> list:
    floor = aliased(Precast)
    tower = aliased(Precast)
    query = db.query(
        StockErected,
        Element.element_name,
        PrecastStock.element_type,
        ElementType.element_type_name,
        floor.id.label("floor_id"),
        floor.name.label("floor_name"),
        tower.name.label("tower_name"),
    ).join(
        PrecastStock, PrecastStock.id == StockErected.precast_stock_id,
    ).join(
        Element, Element.id == StockErected.element_id,
    ).outerjoin(
        ElementType, ElementType.element_type_id == PrecastStock.element_type_id,
    ).outerjoin(
        floor, floor.id == PrecastStock.target_location,
    ).outerjoin(
        tower, tower.id == floor.parent_id,
    ).filter(StockErected.project_id == project_id)
    if status == "pending":
        query = query.filter(StockErected.approved_status.is_(None))
    elif status == "approved":
        query = query.filter(StockErected.approved_status.is_(True))
    elif status == "rejected":
        query = query.filter(StockErected.approved_status.is_(False))
    return query.order_by(StockErected.order_at.desc(), StockErected.id.desc()).all()


def latest_log_statuses(db: Session, request_ids: Sequence[int]) -> dict[int, str]:
    if not request_ids:
        return {}
    rows = db.query(StockErectedLog.stock_erected_id, StockErectedLog.status).filter(
        StockErectedLog.stock_erected_id.in_(list(request_ids))
    ).order_by(StockErectedLog.id).all()
    return {row[0]: row[1] for row in rows}


def list_logs(db: Session, project_id: int) -> list[StockErectedLog]:
    return db.query(StockErectedLog).filter(
        StockErectedLog.project_id == project_id
    ).order_by(StockErectedLog.action_timestamp.desc(), StockErectedLog.id.desc()).all()


@dataclass(frozen=True)
class ErectionHooks(UseCaseHooks):
    load_project: Callable[[Session, int], Project | None] = load_project
    select_requestable_stock: Callable[..., list[PrecastStock]] = select_requestable_stock
    claim_for_erection: Callable[[Session, int], bool] = claim_for_erection
    requests_for_elements: Callable[..., list[StockErected]] = requests_for_elements
    pending_log: Callable[[Session, int], StockErectedLog | None] = pending_log
    stock_states: Callable[..., dict[int, str]] = stock_states
    dispatch_orders_for: Callable[[Session, Sequence[int]], dict[int, str]] = dispatch_orders_for
    advance_stock_state: Callable[..., list] = advance_stock_state
    set_element_status: Callable[..., None] = set_element_status
    load_request_rows: Callable[..., list] = load_request_rows
    latest_log_statuses: Callable[[Session, Sequence[int]], dict[int, str]] = latest_log_statuses
    list_logs: Callable[[Session, int], list[StockErectedLog]] = list_logs


def _require_project(db: Session, project_id: int, hooks: ErectionHooks) -> Project:
    project = hooks.load_project(db, project_id)
    if project is None:
        raise DomainError(code="PROJECT_NOT_FOUND", http_status=404, message="Project not found")
    return project


def _log(request: StockErected, *, status: str, actor: User, comments: str | None, at) -> StockErectedLog:
    return StockErectedLog(
        stock_erected_id=request.id,
        element_id=request.element_id,
        project_id=request.project_id,
        status=status,
        acted_by=actor.id,
        comments=comments,
        action_timestamp=at,
    )


def _ensure_transition(states: Mapping[int, str], element_ids: Sequence[int], target: str) -> None:
    """Every element must be able to enter `target`; elements already there pass unless target is Erected."""
    blocked: dict[int, str] = {}
    for element_id in element_ids:
        current = states.get(element_id)
        if current is None:
            blocked[element_id] = "missing"
            continue
        if current == target and target != ERECTED:
            continue
        try:
            validate_lifecycle_transition(current_state=current, next_state=target)
        except ValueError:
            blocked[element_id] = current
    if blocked:
        raise DomainError(
            code="INVALID_LIFECYCLE_TRANSITION",
            http_status=400,
            message=f"Some elements cannot move to {target}",
            details={"element_states": blocked},
        )


def _require_approved(
    db: Session, *, project_id: int, element_ids: Sequence[int], hooks: ErectionHooks
) -> dict[int, StockErected]:
    approved = {
        row.element_id: row
        for row in hooks.requests_for_elements(db, element_ids=element_ids, project_id=project_id, approved_only=True)
    }
    _, missing = split_known_ids(requested=element_ids, known=approved)
    if missing:
        raise DomainError(
            code="ERECTION_NOT_APPROVED",
            http_status=400,
            message="Erection request is not approved for some elements",
            details={"element_ids": missing},
        )
    return approved


def _notify(hooks: ErectionHooks, *, project_id: int, message: str, reference: str) -> None:
    emit_after_commit(
        hooks,
        KIND_PROJECT_NOTIFICATION,
        {
            "project_id": project_id,
            "message": message,
            "action": f"{settings.FRONTEND_BASE_URL}/project/{project_id}/erection",
            "reference": reference,
        },
    )


def raise_erection_request_use_case(
    *,
    project_id: int,
    request: Mapping[int, Sequence[RaiseRequestLine]],
    current_user: User,
    db: Session,
    hooks: ErectionHooks,
) -> RaiseRequestResult:
    """Claim the oldest matching stock per (floor, element type); each claimed row commits on its own."""
    project = _require_project(db, project_id, hooks)
    try:
        lines = flatten_raise_request(request)
    except ValueError as error:
        raise DomainError(code="INVALID_QUANTITY", http_status=400, message=str(error)) from error
    if not lines:
        raise DomainError(code="NO_VALID_ELEMENTS", http_status=400, message="No erection lines requested")

    results: list[RaisedLineOut] = []
    for floor_id, element_type_id, quantity in lines:
        raised: list[int] = []
        candidates = []
        if quantity > 0:
            candidates = hooks.select_requestable_stock(
                db,
                project_id=project_id,
                floor_id=floor_id,
                element_type_id=element_type_id,
                limit=quantity,
            )
        for stock in candidates:
            stock_id = stock.id
            element_id = stock.element_id
            if not hooks.claim_for_erection(db, stock_id):
                continue
            at = hooks.now_utc()
            erection_request = StockErected(
                precast_stock_id=stock_id,
                element_id=element_id,
                project_id=project_id,
                order_at=at,
                approved_status=None,
                received_in_erection=False,
                erected=False,
            )
            db.add(erection_request)
            db.flush()
            db.add(_log(erection_request, status=LOG_PENDING, actor=current_user, comments=INITIAL_REQUEST_COMMENT, at=at))
            db.commit()
            raised.append(stock_id)

        if len(raised) < quantity:
            logger.warning(
                "Erection request for project %s floor %s type %s: requested %s, raised %s",
                project_id, floor_id, element_type_id, quantity, len(raised),
            )
        results.append(
            RaisedLineOut(
                floor_id=floor_id,
                element_type_id=element_type_id,
                requested=quantity,
                raised=len(raised),
                stock_ids=raised,
            )
        )

    requested_total = sum(line.requested for line in results)
    raised_total = sum(line.raised for line in results)
    if raised_total:
        emit_after_commit(
            hooks,
            KIND_ACTIVITY,
            activity_payload(
                hooks,
                user=current_user,
                event_context="Erection",
                event_name="POST",
                description=f"Erection requested for {raised_total} elements",
                project_id=project_id,
            ),
        )
        _notify(
            hooks,
            project_id=project_id,
            message=f"Erection requested for project: {project.name} ({raised_total} elements)",
            reference=f"erection_raised:{project_id}:{hooks.now_utc().isoformat()}",
        )

    message = "Erection request raised successfully"
    if raised_total < requested_total:
        message = "Erection request raised with insufficient stock"
    return RaiseRequestResult(
        message=message,
        requested_total=requested_total,
        raised_total=raised_total,
        lines=results,
    )


def decide_erection_requests_use_case(
    *,
    decisions: Sequence[ErectionDecision],
    current_user: User,
    db: Session,
    hooks: ErectionHooks,
) -> DecisionResult:
    if not decisions:
        raise DomainError(code="NO_VALID_ELEMENTS", http_status=400, message="No valid element IDs found")
    try:
        ensure_reject_comments(decisions)
    except ValueError as error:
        raise DomainError(code="REJECT_COMMENTS_REQUIRED", http_status=400, message=str(error)) from error

    by_element = {decision.element_id: decision for decision in decisions}
    requested = list(by_element)
    # later rows win, so each element maps to its newest request
    requests = {row.element_id: row for row in hooks.requests_for_elements(db, element_ids=requested)}
    found, missing = split_known_ids(requested=requested, known=requests)
    if not found:
        raise DomainError(
            code="NO_VALID_ELEMENTS",
            http_status=400,
            message="No valid element IDs found",
            details={"missing_ids": missing},
        )

    at = hooks.now_utc()
    projects: set[int] = set()
    for element_id in found:
        decision = by_element[element_id]
        row = requests[element_id]
        row.approved_status = decision.approved
        row.action_approve_or_reject = at
        projects.add(row.project_id)
        if decision.approved:
            row.comments = APPROVED_COMMENT
            pending = hooks.pending_log(db, row.id)
            if pending is None:
                db.add(_log(row, status=LOG_APPROVED, actor=current_user, comments=APPROVED_COMMENT, at=at))
            else:
                pending.status = LOG_APPROVED
                pending.acted_by = current_user.id
                pending.comments = APPROVED_COMMENT
                pending.action_timestamp = at
        else:
            row.comments = decision.comments
            db.add(_log(row, status=LOG_REJECTED, actor=current_user, comments=decision.comments, at=at))
    db.commit()

    if missing:
        logger.warning("Erection decisions skipped unknown elements %s", missing)
    for project_id in sorted(projects):
        emit_after_commit(
            hooks,
            KIND_ACTIVITY,
            activity_payload(
                hooks,
                user=current_user,
                event_context="Erection",
                event_name="PUT",
                description="Erection requests approved or rejected",
                project_id=project_id,
            ),
        )
        _notify(
            hooks,
            project_id=project_id,
            message=f"Erection requests reviewed by {display_name(current_user)}",
            reference=f"erection_decided:{project_id}:{at.isoformat()}",
        )
    return DecisionResult(
        message="Erection requests updated successfully",
        updated_count=len(found),
        missing_ids=missing,
        acted_by=current_user.id,
    )


def receive_at_site_use_case(
    *,
    payload: SiteReceiptRequest,
    current_user: User,
    db: Session,
    hooks: ErectionHooks,
) -> ErectionCountResult:
    project = _require_project(db, payload.project_id, hooks)
    element_ids = dedupe_preserving_order(payload.element_ids)
    approved = _require_approved(db, project_id=payload.project_id, element_ids=element_ids, hooks=hooks)
    states = hooks.stock_states(db, project_id=payload.project_id, element_ids=element_ids)
    _ensure_transition(states, element_ids, RECEIVED_AT_SITE)

    at = hooks.now_utc()
    actor = display_name(current_user)
    hooks.advance_stock_state(
        db,
        project_id=payload.project_id,
        element_ids=element_ids,
        target=RECEIVED_AT_SITE,
        source_states=source_states_for(RECEIVED_AT_SITE),
        at=at,
    )
    dispatched = hooks.dispatch_orders_for(db, element_ids)
    received = 0
    for element_id in element_ids:
        row = approved[element_id]
        if row.received_in_erection:
            continue
        row.received_in_erection = True
        db.add(_log(row, status=LOG_RECEIVED, actor=current_user, comments="Received at erection site", at=at))
        order_number = dispatched.get(element_id)
        if order_number is not None:
            db.add(
                DispatchTrackingLog(
                    order_number=order_number,
                    status=STATUS_RECEIVED,
                    location=LOCATION_ERECTION_SITE,
                    remarks=REMARKS_ELEMENT_RECEIVED.format(element_id=element_id, actor=actor),
                    status_timestamp=at,
                )
            )
        received += 1

    hooks.set_element_status(
        db,
        element_ids=[element_id for element_id in element_ids if element_id in dispatched],
        status=ELEMENT_STATUS_DISPATCH,
    )
    hooks.set_element_status(
        db,
        element_ids=[element_id for element_id in element_ids if element_id not in dispatched],
        status=ELEMENT_STATUS_IN_ERECTION,
    )
    db.commit()

    logger.info("Received %s elements at erection site for project %s", received, payload.project_id)
    emit_after_commit(
        hooks,
        KIND_ACTIVITY,
        activity_payload(
            hooks,
            user=current_user,
            event_context="Erection",
            event_name="PUT",
            description="Elements received at erection site",
            project_id=payload.project_id,
        ),
    )
    _notify(
        hooks,
        project_id=payload.project_id,
        message=f"Elements received at erection site for project: {project.name} ({received} elements)",
        reference=f"erection_site_receipt:{payload.project_id}:{at.isoformat()}",
    )
    return ErectionCountResult(message="Erection status updated successfully", count=received)


def finalize_erected_use_case(
    *,
    payload: FinalizeErectedRequest,
    current_user: User,
    db: Session,
    hooks: ErectionHooks,
) -> ErectionCountResult:
    project = _require_project(db, payload.project_id, hooks)
    element_ids = dedupe_preserving_order(payload.element_ids)
    approved = _require_approved(db, project_id=payload.project_id, element_ids=element_ids, hooks=hooks)
    states = hooks.stock_states(db, project_id=payload.project_id, element_ids=element_ids)
    _ensure_transition(states, element_ids, ERECTED)

    at = hooks.now_utc()
    moved = hooks.advance_stock_state(
        db,
        project_id=payload.project_id,
        element_ids=element_ids,
        target=ERECTED,
        source_states=(RECEIVED_AT_SITE,),
        at=at,
    )
    not_moved = sorted(set(element_ids) - {row.element_id for row in moved})
    if not_moved:
        db.rollback()
        raise DomainError(
            code="INVALID_LIFECYCLE_TRANSITION",
            http_status=400,
            message=f"Some elements cannot move to {ERECTED}",
            details={"element_ids": not_moved},
        )

    comments = payload.comments or "Erected at site"
    for element_id in element_ids:
        row = approved[element_id]
        row.erected = True
        if payload.comments:
            row.comments = payload.comments
        db.add(_log(row, status=LOG_ERECTED, actor=current_user, comments=comments, at=at))
    hooks.set_element_status(db, element_ids=element_ids, status=ELEMENT_STATUS_ERECTED)
    db.commit()

    logger.info("Erected %s elements for project %s", len(element_ids), payload.project_id)
    emit_after_commit(
        hooks,
        KIND_ACTIVITY,
        activity_payload(
            hooks,
            user=current_user,
            event_context="Erection",
            event_name="PUT",
            description="Elements erected",
            project_id=payload.project_id,
        ),
    )
    _notify(
        hooks,
        project_id=payload.project_id,
        message=f"Elements erected for project: {project.name} ({len(element_ids)} elements)",
        reference=f"erected:{payload.project_id}:{at.isoformat()}",
    )
    return ErectionCountResult(message="Elements marked as erected successfully", count=len(element_ids))


def list_erection_requests_use_case(
    *,
    project_id: int,
    status: str | None,
    db: Session,
    hooks: ErectionHooks,
) -> list[ErectionRequestOut]:
    status_key = (status or "all").strip().lower()
    if status_key not in REQUEST_STATUS_FILTERS:
        raise DomainError(
            code="INVALID_STATUS_FILTER",
            http_status=400,
            message=f"Unknown erection request status: {status}",
        )
    rows = hooks.load_request_rows(db, project_id=project_id, status=status_key)
    latest = hooks.latest_log_statuses(db, [row.StockErected.id for row in rows])
    items = []
    for row in rows:
        request = row.StockErected
        items.append(
            ErectionRequestOut(
                id=request.id,
                precast_stock_id=request.precast_stock_id,
                element_id=request.element_id,
                element_name=row.element_name,
                element_type=row.element_type,
                element_type_name=row.element_type_name,
                project_id=request.project_id,
                order_at=request.order_at,
                approved_status=request.approved_status,
                received_in_erection=bool(request.received_in_erection),
                erected=bool(request.erected),
                comments=request.comments,
                action_approve_or_reject=request.action_approve_or_reject,
                latest_status=latest.get(request.id),
                **location_labels(floor_id=row.floor_id, floor_name=row.floor_name, tower_name=row.tower_name),
            )
        )
    return items


def list_erection_logs_use_case(*, project_id: int, db: Session, hooks: ErectionHooks) -> list[ErectionLogOut]:
    return [ErectionLogOut.model_validate(log) for log in hooks.list_logs(db, project_id)]
