"""Work-order use-cases with revision snapshots."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from sqlalchemy import func, update
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from ..config import settings
from ..domain_errors import not_found
from ..models import (
    EndClient,
    InvoiceItem,
    Precast,
    Project,
    User,
    WorkOrder,
    WorkOrderAttachment,
    WorkOrderAttachmentRevision,
    WorkOrderMaterial,
    WorkOrderMaterialRevision,
    WorkOrderRevision,
)
from ..schemas import (
    PaginationOut,
    WorkOrderCreated,
    WorkOrderIn,
    WorkOrderMaterialIn,
    WorkOrderMaterialOut,
    WorkOrderOut,
    WorkOrderPage,
    WorkOrderRevisionOut,
    WorkOrderSummaryOut,
    WorkOrderUpdated,
)
from ..security import WorkOrderAccessPolicy
from ..services.work_order_rules import (
    MATERIAL_SNAPSHOT_FIELDS,
    SNAPSHOT_FIELDS,
    material_balance,
    next_revision,
    snapshot_values,
    total_pages,
)
from .common import KIND_ACTIVITY, UseCaseHooks, activity_payload, emit_after_commit
from .stock_registry import load_project

logger = logging.getLogger(__name__)

# Header columns a client may change; the rest (revision, audit) is managed here.
EDITABLE_FIELDS: tuple[str, ...] = SNAPSHOT_FIELDS


def load_end_client(db: Session, end_client_id: int) -> EndClient | None:
    return db.query(EndClient).filter(EndClient.id == end_client_id).first()


def max_wo_revision(db: Session, wo_number: str) -> int | None:
    return db.query(func.max(WorkOrder.revision)).filter(WorkOrder.wo_number == wo_number).scalar()


def load_work_order(db: Session, work_order_id: int, *, lock: bool = False) -> WorkOrder | None:
    query = db.query(WorkOrder).filter(WorkOrder.id == work_order_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def max_revision_no(db: Session, work_order_id: int) -> int | None:
    return db.query(func.max(WorkOrderRevision.revision_no)).filter(
        WorkOrderRevision.work_order_id == work_order_id
    ).scalar()


def list_revisions(db: Session, work_order_id: int) -> list[WorkOrderRevision]:
    return db.query(WorkOrderRevision).filter(
        WorkOrderRevision.work_order_id == work_order_id
    ).order_by(WorkOrderRevision.revision_no.desc()).all()


def precast_names(db: Session, precast_ids: Iterable[int]) -> dict[int, str]:
    ids = sorted({precast_id for precast_id in precast_ids if precast_id is not None})
    if not ids:
        return {}
    rows = db.query(Precast.id, Precast.name).filter(Precast.id.in_(ids)).all()
    return {row[0]: row[1] for row in rows}


def repoint_invoice_items(db: Session, *, from_ids: Sequence[int], to_id: int) -> None:
    if not from_ids:
        return
    db.execute(
        update(InvoiceItem).where(InvoiceItem.item_id.in_(list(from_ids))).values(item_id=to_id)
    )


def work_order_page(
    db: Session,
    *,
    predicate: ColumnElement[bool],
    offset: int,
    limit: int,
) -> tuple[int, list]:
    base = db.query(WorkOrder, Project, EndClient, User).outerjoin(
        Project, Project.project_id == WorkOrder.project_id,
    ).outerjoin(
        EndClient, EndClient.id == WorkOrder.endclient_id,
    ).outerjoin(
        User, User.id == WorkOrder.created_by,
    ).filter(predicate)
    total = base.count()
    rows = base.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc()).offset(offset).limit(limit).all()
    return total, rows


@dataclass(frozen=True)
class WorkOrderHooks(UseCaseHooks):
    load_project: Callable[[Session, int], Project | None] = load_project
    load_end_client: Callable[[Session, int], EndClient | None] = load_end_client
    max_wo_revision: Callable[[Session, str], int | None] = max_wo_revision
    load_work_order: Callable[..., WorkOrder | None] = load_work_order
    max_revision_no: Callable[[Session, int], int | None] = max_revision_no
    list_revisions: Callable[[Session, int], list[WorkOrderRevision]] = list_revisions
    precast_names: Callable[[Session, Iterable[int]], dict[int, str]] = precast_names
    repoint_invoice_items: Callable[..., None] = repoint_invoice_items
    work_order_page: Callable[..., tuple[int, list]] = work_order_page


def _ensure_parties(db: Session, data: WorkOrderIn, hooks: WorkOrderHooks) -> None:
    if hooks.load_project(db, data.project_id) is None:
        raise not_found("PROJECT_NOT_FOUND", "Project not found")
    if hooks.load_end_client(db, data.endclient_id) is None:
        raise not_found("END_CLIENT_NOT_FOUND", "End client not found")


def _require_work_order(db: Session, work_order_id: int, hooks: WorkOrderHooks, *, lock: bool = False) -> WorkOrder:
    work_order = hooks.load_work_order(db, work_order_id, lock=lock)
    if work_order is None:
        raise not_found("WORK_ORDER_NOT_FOUND", "Work order not found")
    return work_order


def _header_values(data: WorkOrderIn) -> dict:
    return {field: getattr(data, field) for field in EDITABLE_FIELDS}


def _material(line: WorkOrderMaterialIn) -> WorkOrderMaterial:
    return WorkOrderMaterial(
        item_name=line.item_name,
        unit_rate=line.unit_rate,
        volume=line.volume,
        volume_used=0,
        tax=line.tax,
        hsn_code=line.hsn_code,
        tower_id=line.tower_id,
        floor_id=list(line.floor_id),
    )


def _apply_line(material: WorkOrderMaterial, line: WorkOrderMaterialIn) -> WorkOrderMaterial:
    material.unit_rate = line.unit_rate
    material.volume = line.volume
    material.tax = line.tax
    material.hsn_code = line.hsn_code
    material.tower_id = line.tower_id
    material.floor_id = list(line.floor_id)
    return material


def _merge_materials(
    db: Session,
    current: Sequence[WorkOrderMaterial],
    lines: Sequence[WorkOrderMaterialIn],
    hooks: WorkOrderHooks,
) -> list[WorkOrderMaterial]:
    """Match incoming lines to existing rows by item_name, updating them in place.

    Invoice lines reference material ids, so a matched row keeps its id and its
    consumed volume. Surplus rows sharing a kept name fold their consumed volume
    and their invoice lines into the kept row; rows whose name is gone are dropped.
    """
    by_name: dict[str, list[WorkOrderMaterial]] = {}
    for material in current:
        by_name.setdefault(material.item_name, []).append(material)

    merged: list[WorkOrderMaterial] = []
    kept_by_name: dict[str, WorkOrderMaterial] = {}
    for line in lines:
        candidates = by_name.get(line.item_name)
        if candidates:
            material = _apply_line(candidates.pop(0), line)
            kept_by_name.setdefault(line.item_name, material)
        else:
            material = _material(line)
        merged.append(material)

    for name, surplus in by_name.items():
        keeper = kept_by_name.get(name)
        if keeper is None or not surplus:
            continue
        keeper.volume_used = float(keeper.volume_used or 0) + sum(float(row.volume_used or 0) for row in surplus)
        hooks.repoint_invoice_items(db, from_ids=[row.id for row in surplus if row.id is not None], to_id=keeper.id)
    return merged


def create_work_order_use_case(
    *,
    data: WorkOrderIn,
    current_user: User,
    db: Session,
    hooks: WorkOrderHooks,
) -> WorkOrderCreated:
    _ensure_parties(db, data, hooks)
    revision = next_revision(hooks.max_wo_revision(db, data.wo_number), initial=0)
    work_order = WorkOrder(
        **_header_values(data),
        revision=revision,
        created_by=current_user.id,
        updated_by=current_user.id,
        materials=[_material(line) for line in data.material],
        attachments=[WorkOrderAttachment(file_url=url) for url in data.wo_attachment],
    )
    db.add(work_order)
    db.flush()
    db.commit()

    logger.info("Work order %s created (revision %s)", data.wo_number, revision)
    emit_after_commit(
        hooks,
        KIND_ACTIVITY,
        activity_payload(
            hooks,
            user=current_user,
            event_context="WorkOrder",
            event_name="POST",
            description=f"Work order {data.wo_number} created",
            project_id=data.project_id,
        ),
    )
    return WorkOrderCreated(message="Work Order created successfully", id=work_order.id)


def update_work_order_use_case(
    *,
    work_order_id: int,
    data: WorkOrderIn,
    current_user: User,
    db: Session,
    hooks: WorkOrderHooks,
) -> WorkOrderUpdated:
    """Snapshot the current state into a new revision, then replace header, materials and attachments."""
    work_order = _require_work_order(db, work_order_id, hooks, lock=True)
    _ensure_parties(db, data, hooks)

    revision_no = next_revision(hooks.max_revision_no(db, work_order.id), initial=1)
    snapshot = WorkOrderRevision(
        work_order_id=work_order.id,
        revision_no=revision_no,
        created_by=current_user.id,
        materials=[
            WorkOrderMaterialRevision(
                work_order_id=work_order.id,
                **snapshot_values(material, MATERIAL_SNAPSHOT_FIELDS),
            )
            for material in work_order.materials
        ],
        attachments=[
            WorkOrderAttachmentRevision(work_order_id=work_order.id, file_url=attachment.file_url)
            for attachment in work_order.attachments
        ],
        **snapshot_values(work_order, SNAPSHOT_FIELDS),
    )
    db.add(snapshot)
    db.flush()

    for field, value in _header_values(data).items():
        setattr(work_order, field, value)
    work_order.updated_by = current_user.id
    work_order.updated_at = hooks.now_utc()
    work_order.materials = _merge_materials(db, work_order.materials, data.material, hooks)
    work_order.attachments = [WorkOrderAttachment(file_url=url) for url in data.wo_attachment]
    db.flush()
    db.commit()

    logger.info("Work order %s updated, snapshot revision %s", work_order.id, revision_no)
    emit_after_commit(
        hooks,
        KIND_ACTIVITY,
        activity_payload(
            hooks,
            user=current_user,
            event_context="WorkOrder",
            event_name="PUT",
            description=f"Work order {work_order.wo_number} updated (revision {revision_no})",
            project_id=work_order.project_id,
        ),
    )
    return WorkOrderUpdated(
        message="Work Order updated successfully",
        work_order_id=work_order.id,
        revision_no=revision_no,
        updated_by=current_user.id,
    )


def _material_out(material, names: dict[int, str]) -> WorkOrderMaterialOut:
    floor_ids = list(material.floor_id or [])
    return WorkOrderMaterialOut(
        id=material.id,
        item_name=material.item_name,
        unit_rate=float(material.unit_rate or 0),
        volume=float(material.volume or 0),
        volume_used=float(material.volume_used or 0),
        balance=material_balance(volume=material.volume, volume_used=material.volume_used),
        tax=float(material.tax or 0),
        hsn_code=material.hsn_code,
        tower_id=material.tower_id,
        tower_name=names.get(material.tower_id),
        floor_id=floor_ids,
        floor_name=[names[floor_id] for floor_id in floor_ids if floor_id in names],
    )


def _snapshot_out(source) -> dict:
    values = {field: getattr(source, field) for field in SNAPSHOT_FIELDS}
    values["payment_term"] = values["payment_term"] or {}
    values["recurrence_patterns"] = values["recurrence_patterns"] or []
    values["total_value"] = float(values["total_value"] or 0)
    return values


def _location_ids(materials: Sequence) -> list[int]:
    ids: list[int] = []
    for material in materials:
        if material.tower_id is not None:
            ids.append(material.tower_id)
        ids.extend(material.floor_id or [])
    return ids


def get_work_order_use_case(*, work_order_id: int, db: Session, hooks: WorkOrderHooks) -> WorkOrderOut:
    work_order = _require_work_order(db, work_order_id, hooks)
    names = hooks.precast_names(db, _location_ids(work_order.materials))
    return WorkOrderOut(
        id=work_order.id,
        revision=work_order.revision,
        created_by=work_order.created_by,
        updated_by=work_order.updated_by,
        created_at=work_order.created_at,
        updated_at=work_order.updated_at,
        material=[_material_out(material, names) for material in work_order.materials],
        wo_attachment=[attachment.file_url for attachment in work_order.attachments],
        **_snapshot_out(work_order),
    )


def list_work_order_revisions_use_case(
    *,
    work_order_id: int,
    db: Session,
    hooks: WorkOrderHooks,
) -> list[WorkOrderRevisionOut]:
    _require_work_order(db, work_order_id, hooks)
    revisions = hooks.list_revisions(db, work_order_id)
    names = hooks.precast_names(db, [i for revision in revisions for i in _location_ids(revision.materials)])
    return [
        WorkOrderRevisionOut(
            id=revision.id,
            work_order_id=revision.work_order_id,
            revision_no=revision.revision_no,
            created_by=revision.created_by,
            created_at=revision.created_at,
            material=[_material_out(material, names) for material in revision.materials],
            wo_attachment=[attachment.file_url for attachment in revision.attachments],
            **_snapshot_out(revision),
        )
        for revision in revisions
    ]


def list_work_orders_use_case(
    *,
    page: int,
    limit: int | None,
    current_user: User,
    db: Session,
    hooks: WorkOrderHooks,
) -> WorkOrderPage:
    """Work orders visible to the caller, newest first."""
    policy = WorkOrderAccessPolicy.for_user(
        current_user,
        denied_code="WORK_ORDER_ACCESS_DENIED",
        denied_message="No permission to view work orders",
    )
    page = max(page, 1)
    if not limit or limit < 1:
        limit = settings.DEFAULT_PAGE_SIZE

    total, rows = hooks.work_order_page(
        db,
        predicate=policy.work_order_predicate(),
        offset=(page - 1) * limit,
        limit=limit,
    )
    data = [
        WorkOrderSummaryOut(
            id=work_order.id,
            wo_number=work_order.wo_number,
            wo_date=work_order.wo_date,
            wo_validate=work_order.wo_validate,
            total_value=float(work_order.total_value or 0),
            revision=work_order.revision,
            project_id=work_order.project_id,
            project_name=project.name if project else None,
            endclient_id=work_order.endclient_id,
            endclient_name=end_client.name if end_client else None,
            created_by=work_order.created_by,
            created_by_name=f"{creator.first_name} {creator.last_name}".strip() if creator else None,
            created_at=work_order.created_at,
            updated_at=work_order.updated_at,
        )
        for work_order, project, end_client, creator in rows
    ]
    return WorkOrderPage(
        data=data,
        pagination=PaginationOut(
            page=page,
            limit=limit,
            total_records=total,
            total_pages=total_pages(total_records=total, limit=limit),
        ),
    )
