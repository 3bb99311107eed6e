"""Stock registry use-cases: register produced stock, receive it into a stockyard, read dispositions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Sequence

from sqlalchemy import update
from sqlalchemy.orm import Session, aliased

from ..config import settings
from ..domain_errors import DomainError, not_found
from ..models import Element, ElementType, Precast, PrecastStock, PrecastStockApprovalLog, Project, Stockyard, User
from ..schemas import (
    PrecastStockCreate,
    PrecastStockCreated,
    StockApprovalLogOut,
    StockGroupOut,
    StockItemOut,
    StockyardReceiptRequest,
    StockyardReceiptResult,
)
from ..services.dimensions import compute_weight, format_dimensions
from ..services.lifecycle_rules import (
    ELEMENT_STATUS_IN_STOCKYARD,
    IN_STOCKYARD,
    PRODUCED,
    derive_disposition_flags,
    source_states_for,
    states_for_filter,
)
from ..services.precast_hierarchy import location_labels
from .common import (
    KIND_ACTIVITY,
    KIND_PROJECT_NOTIFICATION,
    UseCaseHooks,
    activity_payload,
    emit_after_commit,
)

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_LOCATION = "default_location"
RECEIPT_APPROVED = "Approved"
RECEIPT_COMMENT = "Stock received in stockyard"


def load_element(db: Session, *, element_id: int, project_id: int) -> Element | None:
    return db.query(Element).filter(
        Element.id == element_id,
        Element.project_id == project_id,
    ).first()


def load_element_type(db: Session, element_type_id: int) -> ElementType | None:
    return db.query(ElementType).filter(ElementType.element_type_id == element_type_id).first()


def stock_exists(db: Session, element_id: int) -> bool:
    return db.query(PrecastStock.id).filter(PrecastStock.element_id == element_id).first() is not None


def stockyard_exists(db: Session, stockyard_id: int) -> bool:
    return db.query(Stockyard.id).filter(Stockyard.id == stockyard_id).first() is not None


def load_project(db: Session, project_id: int) -> Project | None:
    return db.query(Project).filter(Project.project_id == project_id).first()


def advance_stock_state(
    db: Session,
    *,
    project_id: int,
    element_ids: Sequence[int],
    target: str,
    source_states: Sequence[str],
    at: datetime,
    extra_values: dict | None = None,
) -> list:
    """Single conditional UPDATE moving rows from `source_states` to `target`; returns moved rows."""
    if not element_ids:
        return []
    values = {"lifecycle_state": target, "updated_at": at}
    values.update(extra_values or {})
    stmt = (
        update(PrecastStock)
        .where(
            PrecastStock.project_id == project_id,
            PrecastStock.element_id.in_(list(element_ids)),
            PrecastStock.lifecycle_state.in_(list(source_states)),
        )
        .values(**values)
        .returning(
            PrecastStock.id,
            PrecastStock.element_id,
            PrecastStock.element_type,
            PrecastStock.element_type_id,
        )
        .execution_options(synchronize_session=False)
    )
    return list(db.execute(stmt).all())


def stocked_element_ids(db: Session, *, project_id: int, element_ids: Sequence[int]) -> set[int]:
    rows = db.query(PrecastStock.element_id).filter(
        PrecastStock.project_id == project_id,
        PrecastStock.element_id.in_(list(element_ids)),
    ).all()
    return {row[0] for row in rows}


def set_element_status(db: Session, *, element_ids: Iterable[int], status: str) -> None:
    ids = list(element_ids)
    if not ids:
        return
    db.query(Element).filter(Element.id.in_(ids)).update(
        {Element.status: status},
        synchronize_session=False,
    )


def element_type_names(db: Session, element_type_ids: Iterable[int]) -> dict[int, str]:
    ids = sorted(set(element_type_ids))
    if not ids:
        return {}
    rows = db.query(ElementType.element_type_id, ElementType.element_type_name).filter(
        ElementType.element_type_id.in_(ids)
    ).all()
    return {row[0]: row[1] for row in rows}


def load_disposition_rows(db: Session, *, project_id: int, states: Sequence[str]) -> list:
    floor = aliased(Precast)
    tower = aliased(Precast)
    return db.query(
        PrecastStock,
        Element.element_name,
        ElementType.element_type_name,
        floor.id.label("floor_id"),
        floor.name.label("floor_name"),
        tower.name.label("tower_name"),
    ).join(
        Element, Element.id == PrecastStock.element_id,
    ).outerjoin(
        ElementType, ElementType.element_type_id == PrecastStock.element_type_id,
    ).outerjoin(
        floor, floor.id == PrecastStock.target_location,
    ).outerjoin(
        tower, tower.id == floor.parent_id,
    ).filter(
        PrecastStock.project_id == project_id,
        Element.disable.is_(False),
        PrecastStock.lifecycle_state.in_(list(states)),
    ).order_by(PrecastStock.element_type, PrecastStock.id).all()


def load_approval_logs(db: Session, project_id: int) -> list:
    return db.query(PrecastStockApprovalLog, User).outerjoin(
        User, User.id == PrecastStockApprovalLog.acted_by,
    ).filter(
        PrecastStockApprovalLog.project_id == project_id
    ).order_by(PrecastStockApprovalLog.action_timestamp.desc(), PrecastStockApprovalLog.id.desc()).all()


@dataclass(frozen=True)
class StockRegistryHooks(UseCaseHooks):
    load_element: Callable[..., Element | None] = load_element
    load_element_type: Callable[[Session, int], ElementType | None] = load_element_type
    load_project: Callable[[Session, int], Project | None] = load_project
    stock_exists: Callable[[Session, int], bool] = stock_exists
    stockyard_exists: Callable[[Session, int], bool] = stockyard_exists
    advance_stock_state: Callable[..., list] = advance_stock_state
    stocked_element_ids: Callable[..., set[int]] = stocked_element_ids
    set_element_status: Callable[..., None] = set_element_status
    element_type_names: Callable[[Session, Iterable[int]], dict[int, str]] = element_type_names
    load_disposition_rows: Callable[..., list] = load_disposition_rows
    load_approval_logs: Callable[[Session, int], list] = load_approval_logs


def to_stock_item_out(row) -> StockItemOut:
    stock = row.PrecastStock
    flags = derive_disposition_flags(
        stock.lifecycle_state,
        order_by_erection=stock.order_by_erection,
        dispatched=stock.dispatch_start is not None,
    )
    labels = location_labels(floor_id=row.floor_id, floor_name=row.floor_name, tower_name=row.tower_name)
    return StockItemOut(
        stock_id=stock.id,
        element_id=stock.element_id,
        element_name=row.element_name,
        element_type=stock.element_type,
        element_type_id=stock.element_type_id,
        element_type_name=row.element_type_name,
        stockyard_id=stock.stockyard_id,
        storage_location=stock.storage_location,
        thickness=float(stock.thickness),
        length=float(stock.length),
        height=float(stock.height),
        dimensions=format_dimensions(
            thickness=float(stock.thickness),
            length=float(stock.length),
            height=float(stock.height),
        ),
        weight=float(stock.weight),
        lifecycle_state=stock.lifecycle_state,
        production_date=stock.production_date,
        dispatch_start=stock.dispatch_start,
        dispatch_end=stock.dispatch_end,
        **flags,
        **labels,
    )


def group_by_element_type(items: Sequence[StockItemOut]) -> list[StockGroupOut]:
    groups: dict[tuple[str, int], list[StockItemOut]] = {}
    for item in items:
        groups.setdefault((item.element_type, item.element_type_id), []).append(item)
    return [
        StockGroupOut(
            element_type=element_type,
            element_type_id=element_type_id,
            element_type_name=members[0].element_type_name,
            count=len(members),
            items=members,
        )
        for (element_type, element_type_id), members in sorted(groups.items())
    ]


def create_precast_stock_use_case(
    *,
    payload: PrecastStockCreate,
    current_user: User,
    db: Session,
    hooks: StockRegistryHooks,
) -> PrecastStockCreated:
    element = hooks.load_element(db, element_id=payload.element_id, project_id=payload.project_id)
    if element is None or element.disable:
        raise DomainError(code="ELEMENT_NOT_FOUND", http_status=404, message="Element not found")

    element_type = hooks.load_element_type(db, element.element_type_id)
    if element_type is None:
        raise DomainError(code="ELEMENT_TYPE_NOT_FOUND", http_status=404, message="Element type not found")

    if hooks.stock_exists(db, element.id):
        raise DomainError(
            code="STOCK_ALREADY_EXISTS",
            http_status=400,
            message="Precast stock already exists for this element",
            details={"element_id": element.id},
        )

    if payload.stockyard_id is not None and not hooks.stockyard_exists(db, payload.stockyard_id):
        raise DomainError(code="STOCKYARD_NOT_FOUND", http_status=404, message="Stockyard not found")

    at = hooks.now_utc()
    weight = compute_weight(
        thickness=element_type.thickness,
        length=element_type.length,
        height=element_type.height,
        density=element_type.density,
    )
    stock = PrecastStock(
        element_id=element.id,
        project_id=payload.project_id,
        element_type=element_type.element_type,
        element_type_id=element_type.element_type_id,
        stockyard_id=payload.stockyard_id,
        storage_location=DEFAULT_STORAGE_LOCATION,
        thickness=element_type.thickness,
        length=element_type.length,
        height=element_type.height,
        weight=weight,
        target_location=element.target_location,
        lifecycle_state=PRODUCED,
        order_by_erection=False,
        production_date=at,
        created_at=at,
        updated_at=at,
    )
    db.add(stock)
    db.flush()
    db.commit()
    db.refresh(stock)

    logger.info("Registered precast stock %s for element %s", stock.id, element.id)
    emit_after_commit(
        hooks,
        KIND_ACTIVITY,
        activity_payload(
            hooks,
            user=current_user,
            event_context="PrecastStock",
            event_name="POST",
            description=f"Precast stock created for element {element.element_name}",
            project_id=payload.project_id,
        ),
    )
    return PrecastStockCreated(
        message="Precast stock created successfully",
        stock_id=stock.id,
        element_id=element.id,
        dimensions=format_dimensions(
            thickness=element_type.thickness,
            length=element_type.length,
            height=element_type.height,
        ),
        weight=weight,
    )


def mark_received_in_stockyard_use_case(
    *,
    payload: StockyardReceiptRequest,
    current_user: User,
    db: Session,
    hooks: StockRegistryHooks,
) -> StockyardReceiptResult:
    project = hooks.load_project(db, payload.project_id)
    if project is None:
        raise DomainError(code="PROJECT_NOT_FOUND", http_status=404, message="Project not found")

    requested = list(dict.fromkeys(payload.element_ids))
    at = hooks.now_utc()
    moved = hooks.advance_stock_state(
        db,
        project_id=payload.project_id,
        element_ids=requested,
        target=IN_STOCKYARD,
        source_states=source_states_for(IN_STOCKYARD),
        at=at,
    )
    moved_ids = [row.element_id for row in moved]
    moved_set = set(moved_ids)
    not_moved = [element_id for element_id in requested if element_id not in moved_set]
    stocked = hooks.stocked_element_ids(db, project_id=payload.project_id, element_ids=not_moved) if not_moved else set()
    skipped_ids = [element_id for element_id in not_moved if element_id in stocked]
    missing_ids = [element_id for element_id in not_moved if element_id not in stocked]

    hooks.set_element_status(db, element_ids=moved_ids, status=ELEMENT_STATUS_IN_STOCKYARD)
    type_names = hooks.element_type_names(db, [row.element_type_id for row in moved])
    for row in moved:
        db.add(
            PrecastStockApprovalLog(
                precast_stock_id=row.id,
                element_id=row.element_id,
                project_id=payload.project_id,
                status=RECEIPT_APPROVED,
                acted_by=current_user.id,
                comments=RECEIPT_COMMENT,
                element_type=row.element_type,
                element_type_name=type_names.get(row.element_type_id),
                action_timestamp=at,
            )
        )
    db.commit()

    if missing_ids:
        logger.warning("Stockyard receipt for project %s: no stock rows for %s", payload.project_id, missing_ids)
    logger.info("Received %s elements into stockyard for project %s", len(moved_ids), payload.project_id)

    if moved_ids:
        message = f"Elements received in stockyard for project: {project.name} ({len(moved_ids)} elements)"
        emit_after_commit(
            hooks,
            KIND_PROJECT_NOTIFICATION,
            {
                "project_id": payload.project_id,
                "message": message,
                "action": f"{settings.FRONTEND_BASE_URL}/project/{payload.project_id}/receiving",
                "reference": f"stockyard_receipt:{payload.project_id}:{at.isoformat()}",
            },
        )
        emit_after_commit(
            hooks,
            KIND_ACTIVITY,
            activity_payload(
                hooks,
                user=current_user,
                event_context="Stockyard",
                event_name="PUT",
                description="Elements Received in Stockyard",
                project_id=payload.project_id,
            ),
        )

    if missing_ids or skipped_ids:
        message = "Stockyard received status updated with warnings"
    else:
        message = "Stockyard received status updated successfully"
    return StockyardReceiptResult(
        message=message,
        updated_count=len(moved_ids),
        updated_ids=moved_ids,
        skipped_ids=skipped_ids,
        missing_ids=missing_ids,
    )


def read_disposition_for_project_use_case(
    *,
    project_id: int,
    disposition: str | None,
    db: Session,
    hooks: StockRegistryHooks,
) -> list[StockGroupOut]:
    try:
        states = states_for_filter(disposition)
    except ValueError as error:
        raise DomainError(code="INVALID_DISPOSITION_FILTER", http_status=400, message=str(error)) from error

    rows = hooks.load_disposition_rows(db, project_id=project_id, states=states)
    return group_by_element_type([to_stock_item_out(row) for row in rows])


def list_stock_approval_logs_use_case(
    *,
    project_id: int,
    db: Session,
    hooks: StockRegistryHooks,
) -> list[StockApprovalLogOut]:
    """Stockyard receipt log of a project, newest first."""
    if hooks.load_project(db, project_id) is None:
        raise not_found("PROJECT_NOT_FOUND", "Project not found")
    return [
        StockApprovalLogOut(
            id=log.id,
            precast_stock_id=log.precast_stock_id,
            element_id=log.element_id,
            project_id=log.project_id,
            status=log.status,
            comments=log.comments,
            element_type=log.element_type,
            element_type_name=log.element_type_name,
            acted_by=log.acted_by,
            acted_by_name=f"{user.first_name} {user.last_name}".strip() if user else None,
            action_timestamp=log.action_timestamp,
        )
        for log, user in hooks.load_approval_logs(db, project_id)
    ]
