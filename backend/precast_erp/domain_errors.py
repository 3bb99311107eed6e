"""Domain-level errors for use-case and application layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Business error with stable code and HTTP status mapping."""

    code: str
    http_status: int
    message: str
    details: Any = None
    unavailable_elements: list[int] | None = None

    def __str__(self) -> str:
        return self.message


def not_found(code: str, message: str, details: Any = None) -> DomainError:
    return DomainError(code=code, http_status=404, message=message, details=details)


def invalid_input(code: str, message: str, details: Any = None) -> DomainError:
    return DomainError(code=code, http_status=400, message=message, details=details)


def items_unavailable(element_ids: list[int]) -> DomainError:
    """Dispatch reservation failure carrying the offending element ids."""
    return DomainError(
        code="ITEMS_UNAVAILABLE",
        http_status=400,
        message="Some elements are not available for dispatch",
        unavailable_elements=sorted(element_ids),
    )
