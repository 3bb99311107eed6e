"""Invoice use-cases over work-order material balances."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from ..config import settings
from ..domain_errors import DomainError, invalid_input, not_found
from ..models import EndClient, Invoice, InvoiceItem, Project, User, WorkOrder, WorkOrderMaterial
from ..schemas import (
    InvoiceCreate,
    InvoiceCreated,
    InvoiceItemOut,
    InvoiceOut,
    InvoiceSubmitted,
    InvoiceSummaryOut,
    PaginationOut,
    PendingInvoiceItemOut,
    PendingInvoiceOut,
    PendingInvoicePage,
)
from ..security import WorkOrderAccessPolicy
from ..services.work_order_rules import (
    ensure_volume_within_balance,
    invoice_name,
    material_balance,
    next_revision,
    total_pages,
)
from .common import KIND_ACTIVITY, UseCaseHooks, activity_payload, emit_after_commit
from .stock_registry import load_project
from .work_orders import load_end_client, load_work_order

logger = logging.getLogger(__name__)


def max_invoice_revision(db: Session, work_order_id: int) -> int | None:
    return db.query(func.max(Invoice.revision_no)).filter(Invoice.work_order_id == work_order_id).scalar()


def load_materials(db: Session, *, work_order_id: int, item_ids: Sequence[int]) -> list[WorkOrderMaterial]:
    """Material lines of the work order, locked so concurrent invoices see each other's consumption."""
    if not item_ids:
        return []
    return db.query(WorkOrderMaterial).filter(
        WorkOrderMaterial.work_order_id == work_order_id,
        WorkOrderMaterial.id.in_(list(item_ids)),
    ).order_by(WorkOrderMaterial.id).with_for_update().all()


def load_invoice(db: Session, invoice_id: int, *, lock: bool = False) -> Invoice | None:
    query = db.query(Invoice).filter(Invoice.id == invoice_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def pending_invoice_page(
    db: Session,
    *,
    predicate: ColumnElement[bool],
    offset: int,
    limit: int,
) -> tuple[int, list]:
    base = db.query(Invoice, WorkOrder).join(
        WorkOrder, WorkOrder.id == Invoice.work_order_id,
    ).filter(Invoice.indraft.is_(True), predicate)
    total = base.count()
    rows = base.order_by(Invoice.created_at.desc(), Invoice.id.desc()).offset(offset).limit(limit).all()
    return total, rows


def pending_invoice_items(db: Session, invoice_ids: Sequence[int]) -> list:
    if not invoice_ids:
        return []
    return db.query(InvoiceItem, WorkOrderMaterial).outerjoin(
        WorkOrderMaterial, WorkOrderMaterial.id == InvoiceItem.item_id,
    ).filter(
        InvoiceItem.invoice_id.in_(list(invoice_ids))
    ).order_by(InvoiceItem.id).all()


def load_invoice_view(db: Session, invoice_id: int, *, predicate: ColumnElement[bool]):
    """Invoice with its work order, project and end client, or None when missing or out of scope."""
    return db.query(Invoice, WorkOrder, Project, EndClient).join(
        WorkOrder, WorkOrder.id == Invoice.work_order_id,
    ).outerjoin(
        Project, Project.project_id == WorkOrder.project_id,
    ).outerjoin(
        EndClient, EndClient.id == WorkOrder.endclient_id,
    ).filter(Invoice.id == invoice_id, predicate).first()


def invoices_for_work_order(db: Session, work_order_id: int, *, predicate: ColumnElement[bool]) -> list[Invoice]:
    return db.query(Invoice).join(
        WorkOrder, WorkOrder.id == Invoice.work_order_id,
    ).filter(
        Invoice.work_order_id == work_order_id, predicate
    ).order_by(Invoice.revision_no.asc()).all()


@dataclass(frozen=True)
class InvoiceHooks(UseCaseHooks):
    load_work_order: Callable[..., WorkOrder | None] = load_work_order
    load_project: Callable[[Session, int], Project | None] = load_project
    load_end_client: Callable[[Session, int], EndClient | None] = load_end_client
    max_invoice_revision: Callable[[Session, int], int | None] = max_invoice_revision
    load_materials: Callable[..., list[WorkOrderMaterial]] = load_materials
    load_invoice: Callable[..., Invoice | None] = load_invoice
    pending_invoice_page: Callable[..., tuple[int, list]] = pending_invoice_page
    pending_invoice_items: Callable[[Session, Sequence[int]], list] = pending_invoice_items
    load_invoice_view: Callable[..., tuple | None] = load_invoice_view
    invoices_for_work_order: Callable[..., list[Invoice]] = invoices_for_work_order


def create_invoice_use_case(
    *,
    data: InvoiceCreate,
    current_user: User,
    db: Session,
    hooks: InvoiceHooks,
) -> InvoiceCreated:
    work_order = hooks.load_work_order(db, data.work_order_id, lock=True)
    if work_order is None:
        raise not_found("WORK_ORDER_NOT_FOUND", "Work order not found")
    end_client = hooks.load_end_client(db, work_order.endclient_id)
    project = hooks.load_project(db, work_order.project_id)
    if end_client is None or project is None:
        raise not_found("WORK_ORDER_PARTIES_NOT_FOUND", "End client or project of the work order not found")

    item_ids = [item.item_id for item in data.items]
    materials = {material.id: material for material in hooks.load_materials(db, work_order_id=work_order.id, item_ids=item_ids)}
    unknown = sorted({item_id for item_id in item_ids if item_id not in materials})
    if unknown:
        raise invalid_input(
            "INVOICE_ITEM_NOT_FOUND",
            "Some items do not belong to the work order",
            details={"item_ids": unknown},
        )

    revision_no = next_revision(hooks.max_invoice_revision(db, work_order.id), initial=1)
    lines: list[InvoiceItem] = []
    for item in data.items:
        material = materials[item.item_id]
        try:
            ensure_volume_within_balance(
                requested=item.volume,
                volume=material.volume,
                volume_used=material.volume_used,
            )
        except ValueError as error:
            db.rollback()
            raise DomainError(
                code="VOLUME_EXCEEDS_BALANCE",
                http_status=400,
                message=str(error),
                details={"item_id": item.item_id},
            ) from error
        material.volume_used = float(material.volume_used or 0) + item.volume
        if item.hsn_code is not None:
            material.hsn_code = item.hsn_code
        lines.append(
            InvoiceItem(item_id=item.item_id, item_name=material.item_name, volume=item.volume, hsn_code=item.hsn_code)
        )

    name = invoice_name(
        end_client_abbreviation=end_client.abbreviation,
        project_abbreviation=project.abbreviation,
        revision_no=revision_no,
    )
    invoice = Invoice(
        work_order_id=work_order.id,
        name=name,
        revision_no=revision_no,
        billing_address=data.billing_address,
        shipping_address=data.shipping_address,
        total_amount=data.total_amount,
        payment_status="pending",
        indraft=True,
        created_by=current_user.id,
        updated_by=current_user.id,
        items=lines,
    )
    db.add(invoice)
    db.flush()
    db.commit()

    logger.info("Invoice %s created for work order %s", name, work_order.id)
    emit_after_commit(
        hooks,
        KIND_ACTIVITY,
        activity_payload(
            hooks,
            user=current_user,
            event_context="Invoice",
            event_name="POST",
            description=f"Invoice {name} created",
            project_id=work_order.project_id,
        ),
    )
    return InvoiceCreated(message="Invoice created successfully", id=invoice.id, revision_no=revision_no, name=name)


def submit_invoice_use_case(
    *,
    invoice_id: int,
    current_user: User,
    db: Session,
    hooks: InvoiceHooks,
) -> InvoiceSubmitted:
    invoice = hooks.load_invoice(db, invoice_id, lock=True)
    if invoice is None:
        raise not_found("INVOICE_NOT_FOUND", "Invoice not found")
    if not invoice.indraft:
        raise invalid_input("INVOICE_NOT_DRAFT", "Invoice is already submitted")

    invoice.indraft = False
    invoice.updated_by = current_user.id
    invoice.updated_at = hooks.now_utc()
    db.commit()

    logger.info("Invoice %s submitted", invoice.id)
    emit_after_commit(
        hooks,
        KIND_ACTIVITY,
        activity_payload(
            hooks,
            user=current_user,
            event_context="Invoice",
            event_name="PUT",
            description=f"Invoice {invoice.name} submitted",
            project_id=None,
        ),
    )
    return InvoiceSubmitted(message="Invoice submitted successfully", id=invoice.id)


def list_pending_invoices_use_case(
    *,
    page: int,
    limit: int | None,
    current_user: User,
    db: Session,
    hooks: InvoiceHooks,
) -> PendingInvoicePage:
    policy = WorkOrderAccessPolicy.for_user(current_user)
    page = max(page, 1)
    if not limit or limit < 1:
        limit = settings.DEFAULT_PAGE_SIZE

    total, rows = hooks.pending_invoice_page(
        db,
        predicate=policy.work_order_predicate(),
        offset=(page - 1) * limit,
        limit=limit,
    )
    items_by_invoice: dict[int, list[PendingInvoiceItemOut]] = {}
    for item, material in hooks.pending_invoice_items(db, [invoice.id for invoice, _ in rows]):
        items_by_invoice.setdefault(item.invoice_id, []).append(
            PendingInvoiceItemOut(
                id=item.id,
                item_id=item.item_id,
                item_name=material.item_name if material else item.item_name,
                volume=float(item.volume),
                hsn_code=item.hsn_code,
                unit_rate=float(material.unit_rate) if material else None,
                tax=float(material.tax) if material else None,
                balance=material_balance(volume=material.volume, volume_used=material.volume_used) if material else 0.0,
            )
        )

    data = [
        PendingInvoiceOut(
            id=invoice.id,
            name=invoice.name,
            work_order_id=work_order.id,
            wo_number=work_order.wo_number,
            endclient_id=work_order.endclient_id,
            project_id=work_order.project_id,
            revision_no=invoice.revision_no,
            total_amount=float(invoice.total_amount or 0),
            billing_address=invoice.billing_address,
            shipping_address=invoice.shipping_address,
            created_by=invoice.created_by,
            created_at=invoice.created_at,
            items=items_by_invoice.get(invoice.id, []),
        )
        for invoice, work_order in rows
    ]
    return PendingInvoicePage(
        data=data,
        pagination=PaginationOut(
            page=page,
            limit=limit,
            total_records=total,
            total_pages=total_pages(total_records=total, limit=limit),
        ),
    )


def get_invoice_use_case(
    *,
    invoice_id: int,
    current_user: User,
    db: Session,
    hooks: InvoiceHooks,
) -> InvoiceOut:
    policy = WorkOrderAccessPolicy.for_user(current_user)
    row = hooks.load_invoice_view(db, invoice_id, predicate=policy.work_order_predicate())
    if row is None:
        raise not_found("INVOICE_NOT_FOUND", "Invoice not found")
    invoice, work_order, project, end_client = row

    items = [
        InvoiceItemOut(
            id=item.id,
            item_id=item.item_id,
            item_name=material.item_name if material else item.item_name,
            volume=float(item.volume),
            hsn_code=item.hsn_code,
            unit_rate=float(material.unit_rate) if material else None,
            tax=float(material.tax) if material else None,
            volume_used=float(material.volume_used or 0) if material else None,
            tower_id=material.tower_id if material else None,
            floor_id=list(material.floor_id or []) if material else [],
        )
        for item, material in hooks.pending_invoice_items(db, [invoice.id])
    ]
    return InvoiceOut(
        id=invoice.id,
        name=invoice.name,
        work_order_id=work_order.id,
        wo_number=work_order.wo_number,
        project_id=work_order.project_id,
        project_name=project.name if project else None,
        endclient_id=work_order.endclient_id,
        endclient_name=end_client.name if end_client else None,
        payment_term=work_order.payment_term or {},
        revision_no=invoice.revision_no,
        billing_address=invoice.billing_address,
        shipping_address=invoice.shipping_address,
        total_amount=float(invoice.total_amount or 0),
        payment_status=invoice.payment_status,
        indraft=invoice.indraft,
        created_by=invoice.created_by,
        updated_by=invoice.updated_by,
        created_at=invoice.created_at,
        updated_at=invoice.updated_at,
        items=items,
    )


def list_invoices_by_work_order_use_case(
    *,
    work_order_id: int,
    current_user: User,
    db: Session,
    hooks: InvoiceHooks,
) -> list[InvoiceSummaryOut]:
    """Every invoice raised against the work order, oldest revision first; empty when there are none."""
    policy = WorkOrderAccessPolicy.for_user(current_user)
    invoices = hooks.invoices_for_work_order(db, work_order_id, predicate=policy.work_order_predicate())
    return [
        InvoiceSummaryOut(
            id=invoice.id,
            name=invoice.name,
            work_order_id=invoice.work_order_id,
            revision_no=invoice.revision_no,
            total_amount=float(invoice.total_amount or 0),
            payment_status=invoice.payment_status,
            indraft=invoice.indraft,
            billing_address=invoice.billing_address,
            shipping_address=invoice.shipping_address,
            created_by=invoice.created_by,
            created_at=invoice.created_at,
            updated_at=invoice.updated_at,
        )
        for invoice in invoices
    ]
