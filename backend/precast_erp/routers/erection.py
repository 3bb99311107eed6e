"""Erection request endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Response
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_session
from ..celery_app import enqueue_side_effect
from ..database import get_db
from ..models import UserSession
from ..schemas import (
    DecisionResult,
    ErectionCountResult,
    ErectionDecision,
    ErectionLogOut,
    ErectionRequestOut,
    FinalizeErectedRequest,
    RaiseRequestLine,
    RaiseRequestResult,
    SiteReceiptRequest,
)
from ..use_cases.common import bind_request
from ..use_cases.erection import (
    ErectionHooks,
    decide_erection_requests_use_case,
    finalize_erected_use_case,
    list_erection_logs_use_case,
    list_erection_requests_use_case,
    raise_erection_request_use_case,
    receive_at_site_use_case,
)

router = APIRouter(tags=["erection"])

ERECTION_HOOKS = ErectionHooks()


def _hooks(session: UserSession) -> ErectionHooks:
    return bind_request(ERECTION_HOOKS, session=session, emit=enqueue_side_effect)


@router.post(
    "/projects/{project_id}/erection-requests",
    response_model=RaiseRequestResult,
    status_code=201,
    dependencies=[Depends(PermissionChecker("canRaiseErection"))],
)
def raise_erection_request(
    project_id: int,
    payload: dict[int, list[RaiseRequestLine]] = Body(...),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Body maps floor id to `[{element_type_id, quantity}]`."""
    return raise_erection_request_use_case(
        project_id=project_id,
        request=payload,
        current_user=session.user,
        db=db,
        hooks=_hooks(session),
    )


@router.put(
    "/erection-requests/decisions",
    response_model=DecisionResult,
    dependencies=[Depends(PermissionChecker("canApproveErection"))],
)
def decide_erection_requests(
    payload: list[ErectionDecision],
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return decide_erection_requests_use_case(
        decisions=payload,
        current_user=session.user,
        db=db,
        hooks=_hooks(session),
    )


@router.put(
    "/erection/received",
    response_model=ErectionCountResult,
    dependencies=[Depends(PermissionChecker("canManageErection"))],
)
def receive_at_site(
    payload: SiteReceiptRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return receive_at_site_use_case(payload=payload, current_user=session.user, db=db, hooks=_hooks(session))


@router.put(
    "/erection/erected",
    response_model=ErectionCountResult,
    dependencies=[Depends(PermissionChecker("canManageErection"))],
)
def finalize_erected(
    payload: FinalizeErectedRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return finalize_erected_use_case(payload=payload, current_user=session.user, db=db, hooks=_hooks(session))


@router.get("/projects/{project_id}/erection-requests", response_model=list[ErectionRequestOut])
def list_erection_requests(
    project_id: int,
    status: Optional[str] = Query(default=None),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    requests = list_erection_requests_use_case(project_id=project_id, status=status, db=db, hooks=_hooks(session))
    if not requests:
        return Response(status_code=204)
    return requests


@router.get("/projects/{project_id}/erection-logs", response_model=list[ErectionLogOut])
def list_erection_logs(
    project_id: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return list_erection_logs_use_case(project_id=project_id, db=db, hooks=_hooks(session))
