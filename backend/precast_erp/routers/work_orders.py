"""Work-order endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_session
from ..celery_app import enqueue_side_effect
from ..database import get_db
from ..models import UserSession
from ..schemas import (
    WorkOrderCreated,
    WorkOrderIn,
    WorkOrderOut,
    WorkOrderPage,
    WorkOrderRevisionOut,
    WorkOrderUpdated,
)
from ..use_cases.common import bind_request
from ..use_cases.work_orders import (
    WorkOrderHooks,
    create_work_order_use_case,
    get_work_order_use_case,
    list_work_order_revisions_use_case,
    list_work_orders_use_case,
    update_work_order_use_case,
)

router = APIRouter(prefix="/work-orders", tags=["work-orders"])

WORK_ORDER_HOOKS = WorkOrderHooks()


def _hooks(session: UserSession) -> WorkOrderHooks:
    return bind_request(WORK_ORDER_HOOKS, session=session, emit=enqueue_side_effect)


@router.post(
    "",
    response_model=WorkOrderCreated,
    status_code=201,
    dependencies=[Depends(PermissionChecker("canManageWorkOrders"))],
)
def create_work_order(
    payload: WorkOrderIn,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return create_work_order_use_case(data=payload, current_user=session.user, db=db, hooks=_hooks(session))


@router.get("", response_model=WorkOrderPage)
def list_work_orders(
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Work orders of the caller's end clients (all of them for superadmin), newest first."""
    return list_work_orders_use_case(
        page=page,
        limit=limit,
        current_user=session.user,
        db=db,
        hooks=_hooks(session),
    )


@router.get("/{work_order_id}", response_model=WorkOrderOut)
def get_work_order(
    work_order_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return get_work_order_use_case(work_order_id=work_order_id, db=db, hooks=_hooks(session))


@router.put(
    "/{work_order_id}",
    response_model=WorkOrderUpdated,
    dependencies=[Depends(PermissionChecker("canManageWorkOrders"))],
)
def update_work_order(
    work_order_id: int,
    payload: WorkOrderIn,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Snapshot the current work order as a revision, then apply the update."""
    return update_work_order_use_case(
        work_order_id=work_order_id,
        data=payload,
        current_user=session.user,
        db=db,
        hooks=_hooks(session),
    )


@router.get("/{work_order_id}/revisions", response_model=list[WorkOrderRevisionOut])
def list_work_order_revisions(
    work_order_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    revisions = list_work_order_revisions_use_case(work_order_id=work_order_id, db=db, hooks=_hooks(session))
    if not revisions:
        return Response(status_code=204)
    return revisions
