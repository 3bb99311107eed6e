"""Row-level access policies."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select, true
from sqlalchemy.sql.elements import ColumnElement

from .domain_errors import DomainError
from .models import Client, EndClient, User, WorkOrder


@dataclass(frozen=True)
class WorkOrderAccessPolicy:
    """Which work orders (and their invoices) a caller may see, as a parameterised predicate."""

    role: str
    user_id: int

    SEES_ALL = frozenset({"superadmin"})
    SEES_OWN_CLIENTS = frozenset({"admin"})

    @classmethod
    def for_user(
        cls,
        user: User,
        *,
        denied_code: str = "INVOICE_ACCESS_DENIED",
        denied_message: str = "Access denied",
    ) -> "WorkOrderAccessPolicy":
        if user.role not in cls.SEES_ALL | cls.SEES_OWN_CLIENTS:
            raise DomainError(code=denied_code, http_status=403, message=denied_message)
        return cls(role=user.role, user_id=user.id)

    def work_order_predicate(self) -> ColumnElement[bool]:
        if self.role in self.SEES_ALL:
            return true()
        owned_end_clients = (
            select(EndClient.id)
            .join(Client, Client.client_id == EndClient.client_id)
            .where(Client.user_id == self.user_id)
        )
        return WorkOrder.endclient_id.in_(owned_end_clients)
