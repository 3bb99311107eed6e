"""Dispatch order endpoints (stockyard -> truck -> erection site)."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_session
from ..celery_app import enqueue_side_effect
from ..database import get_db
from ..models import UserSession
from ..schemas import (
    DispatchCreated,
    DispatchOrderCreate,
    DispatchOrderOut,
    DispatchReceived,
    DispatchTransitioned,
    TrackingLogsOut,
)
from ..use_cases.common import bind_request
from ..use_cases.dispatch import (
    DispatchHooks,
    create_dispatch_use_case,
    get_dispatch_order_use_case,
    get_dispatch_orders_by_project_use_case,
    get_tracking_logs_use_case,
    receive_dispatch_use_case,
    transition_to_in_transit_use_case,
)

router = APIRouter(tags=["dispatch"])

DISPATCH_HOOKS = DispatchHooks()


def _hooks(session: UserSession) -> DispatchHooks:
    return bind_request(DISPATCH_HOOKS, session=session, emit=enqueue_side_effect)


@router.post(
    "/dispatch-orders",
    response_model=DispatchCreated,
    dependencies=[Depends(PermissionChecker("canDispatch"))],
)
def create_dispatch_order(
    payload: DispatchOrderCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Reserve stockyard elements onto a new dispatch order; all or nothing."""
    return create_dispatch_use_case(data=payload, current_user=session.user, db=db, hooks=_hooks(session))


@router.put(
    "/dispatch-orders/{order_id}/in-transit",
    response_model=DispatchTransitioned,
    dependencies=[Depends(PermissionChecker("canDispatch"))],
)
def mark_in_transit(
    order_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return transition_to_in_transit_use_case(
        order_id=order_id,
        current_user=session.user,
        db=db,
        hooks=_hooks(session),
    )


@router.put(
    "/dispatch-orders/{order_id}/receive",
    response_model=DispatchReceived,
    dependencies=[Depends(PermissionChecker("canReceiveDispatch"))],
)
def receive_dispatch_order(
    order_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return receive_dispatch_use_case(order_id=order_id, current_user=session.user, db=db, hooks=_hooks(session))


@router.get("/projects/{project_id}/dispatch-orders", response_model=list[DispatchOrderOut])
def list_dispatch_orders(
    project_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    orders = get_dispatch_orders_by_project_use_case(project_id=project_id, db=db, hooks=_hooks(session))
    if not orders:
        return Response(status_code=204)
    return orders


@router.get("/dispatch-orders/{order_id}", response_model=DispatchOrderOut)
def get_dispatch_order(
    order_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return get_dispatch_order_use_case(order_id=order_id, db=db, hooks=_hooks(session))


@router.get("/projects/{project_id}/dispatch-tracking", response_model=TrackingLogsOut)
def list_tracking_logs(
    project_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return get_tracking_logs_use_case(project_id=project_id, db=db, hooks=_hooks(session))
