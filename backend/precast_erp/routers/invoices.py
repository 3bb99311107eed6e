"""Invoice endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_session
from ..celery_app import enqueue_side_effect
from ..database import get_db
from ..models import UserSession
from ..schemas import (
    InvoiceCreate,
    InvoiceCreated,
    InvoiceOut,
    InvoiceSubmitted,
    InvoiceSummaryOut,
    PendingInvoicePage,
)
from ..use_cases.common import bind_request
from ..use_cases.invoices import (
    InvoiceHooks,
    create_invoice_use_case,
    get_invoice_use_case,
    list_invoices_by_work_order_use_case,
    list_pending_invoices_use_case,
    submit_invoice_use_case,
)

router = APIRouter(prefix="/invoices", tags=["invoices"])

INVOICE_HOOKS = InvoiceHooks()


def _hooks(session: UserSession) -> InvoiceHooks:
    return bind_request(INVOICE_HOOKS, session=session, emit=enqueue_side_effect)


@router.post(
    "",
    response_model=InvoiceCreated,
    status_code=201,
    dependencies=[Depends(PermissionChecker("canManageInvoices"))],
)
def create_invoice(
    payload: InvoiceCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return create_invoice_use_case(data=payload, current_user=session.user, db=db, hooks=_hooks(session))


@router.put(
    "/{invoice_id}/submit",
    response_model=InvoiceSubmitted,
    dependencies=[Depends(PermissionChecker("canManageInvoices"))],
)
def submit_invoice(
    invoice_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return submit_invoice_use_case(invoice_id=invoice_id, current_user=session.user, db=db, hooks=_hooks(session))


@router.get(
    "/pending",
    response_model=PendingInvoicePage,
    dependencies=[Depends(PermissionChecker("canViewInvoices"))],
)
def list_pending_invoices(
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Draft invoices visible to the caller, newest first."""
    return list_pending_invoices_use_case(
        page=page,
        limit=limit,
        current_user=session.user,
        db=db,
        hooks=_hooks(session),
    )


@router.get(
    "/work-order/{work_order_id}",
    response_model=list[InvoiceSummaryOut],
    dependencies=[Depends(PermissionChecker("canViewInvoices"))],
)
def list_invoices_by_work_order(
    work_order_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return list_invoices_by_work_order_use_case(
        work_order_id=work_order_id,
        current_user=session.user,
        db=db,
        hooks=_hooks(session),
    )


@router.get(
    "/{invoice_id}",
    response_model=InvoiceOut,
    dependencies=[Depends(PermissionChecker("canViewInvoices"))],
)
def get_invoice(
    invoice_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return get_invoice_use_case(invoice_id=invoice_id, current_user=session.user, db=db, hooks=_hooks(session))
