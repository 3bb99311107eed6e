"""Session authentication and role permissions."""
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from .database import get_db
from .models import User, UserSession

logger = logging.getLogger(__name__)


def get_current_session(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> UserSession:
    """Resolve the opaque session id sent verbatim in the Authorization header."""
    session_id = (authorization or "").strip()
    if not session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Authorization header",
        )

    session = db.query(UserSession).filter(
        UserSession.session_id == session_id,
        UserSession.expires_at > func.now(),
    ).first()
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )

    user = session.user
    if user is None or not user.is_active:
        logger.warning("Session %s points at a missing or inactive user", session.user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return session


def get_current_user(session: UserSession = Depends(get_current_session)) -> User:
    """Get current authenticated user."""
    return session.user


# Permission checks
class PermissionChecker:
    """Check user permissions based on role."""

    def __init__(self, required_permission: str):
        self.required_permission = required_permission

    def __call__(self, current_user: User = Depends(get_current_user)):
        """Check if user has required permission."""
        if not check_permission(current_user, self.required_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {self.required_permission} required"
            )
        return current_user


# Role permissions matrix
ROLE_PERMISSIONS = {
    "superadmin": {
        "canManageStock": True,
        "canDispatch": True,
        "canReceiveDispatch": True,
        "canRaiseErection": True,
        "canApproveErection": True,
        "canManageErection": True,
        "canManageWorkOrders": True,
        "canManageInvoices": True,
        "canViewInvoices": True,
    },
    "admin": {
        "canManageStock": True,
        "canDispatch": True,
        "canReceiveDispatch": True,
        "canRaiseErection": True,
        "canApproveErection": True,
        "canManageErection": True,
        "canManageWorkOrders": True,
        "canManageInvoices": True,
        "canViewInvoices": True,
    },
    "project_manager": {
        "canManageStock": False,
        "canDispatch": False,
        "canReceiveDispatch": False,
        "canRaiseErection": True,
        "canApproveErection": True,
        "canManageErection": False,
        "canManageWorkOrders": True,
        "canManageInvoices": True,
        "canViewInvoices": False,
    },
    "stockyard_manager": {
        "canManageStock": True,
        "canDispatch": True,
        "canReceiveDispatch": False,
        "canRaiseErection": False,
        "canApproveErection": False,
        "canManageErection": False,
        "canManageWorkOrders": False,
        "canManageInvoices": False,
        "canViewInvoices": False,
    },
    "dispatcher": {
        "canManageStock": False,
        "canDispatch": True,
        "canReceiveDispatch": True,
        "canRaiseErection": False,
        "canApproveErection": False,
        "canManageErection": False,
        "canManageWorkOrders": False,
        "canManageInvoices": False,
        "canViewInvoices": False,
    },
    "site_engineer": {
        "canManageStock": False,
        "canDispatch": False,
        "canReceiveDispatch": True,
        "canRaiseErection": True,
        "canApproveErection": False,
        "canManageErection": True,
        "canManageWorkOrders": False,
        "canManageInvoices": False,
        "canViewInvoices": False,
    },
    "viewer": {
        "canManageStock": False,
        "canDispatch": False,
        "canReceiveDispatch": False,
        "canRaiseErection": False,
        "canApproveErection": False,
        "canManageErection": False,
        "canManageWorkOrders": False,
        "canManageInvoices": False,
        "canViewInvoices": False,
    },
}


def check_permission(user: User, permission: str) -> bool:
    """Check if user has specific permission."""
    permissions = ROLE_PERMISSIONS.get(user.role, {})
    return permissions.get(permission, False)
