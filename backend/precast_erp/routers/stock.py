"""Precast stock registry endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_session
from ..celery_app import enqueue_side_effect
from ..database import get_db
from ..models import UserSession
from ..schemas import (
    PrecastStockCreate,
    PrecastStockCreated,
    StockApprovalLogOut,
    StockGroupOut,
    StockyardReceiptRequest,
    StockyardReceiptResult,
)
from ..use_cases.common import bind_request
from ..use_cases.stock_registry import (
    StockRegistryHooks,
    create_precast_stock_use_case,
    list_stock_approval_logs_use_case,
    mark_received_in_stockyard_use_case,
    read_disposition_for_project_use_case,
)

router = APIRouter(tags=["precast-stock"])

STOCK_REGISTRY_HOOKS = StockRegistryHooks()


def _hooks(session: UserSession) -> StockRegistryHooks:
    return bind_request(STOCK_REGISTRY_HOOKS, session=session, emit=enqueue_side_effect)


@router.post(
    "/precast-stock",
    response_model=PrecastStockCreated,
    status_code=201,
    dependencies=[Depends(PermissionChecker("canManageStock"))],
)
def create_precast_stock(
    payload: PrecastStockCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return create_precast_stock_use_case(
        payload=payload,
        current_user=session.user,
        db=db,
        hooks=_hooks(session),
    )


@router.put(
    "/precast-stock/stockyard-received",
    response_model=StockyardReceiptResult,
    dependencies=[Depends(PermissionChecker("canManageStock"))],
)
def mark_received_in_stockyard(
    payload: StockyardReceiptRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Move produced elements into the stockyard."""
    return mark_received_in_stockyard_use_case(
        payload=payload,
        current_user=session.user,
        db=db,
        hooks=_hooks(session),
    )


@router.get("/projects/{project_id}/precast-stock", response_model=list[StockGroupOut])
def read_project_stock(
    project_id: int,
    disposition: Optional[str] = Query(default=None),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Stock grouped by element type, filtered by disposition (all, produced, in_stockyard, ...)."""
    groups = read_disposition_for_project_use_case(
        project_id=project_id,
        disposition=disposition,
        db=db,
        hooks=_hooks(session),
    )
    if not groups:
        return Response(status_code=204)
    return groups


@router.get("/projects/{project_id}/precast-stock/approval-logs", response_model=list[StockApprovalLogOut])
def list_stock_approval_logs(
    project_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return list_stock_approval_logs_use_case(project_id=project_id, db=db, hooks=_hooks(session))
