"""Element lifecycle state machine and legacy flag derivation."""

from __future__ import annotations

from datetime import datetime, timezone


PRODUCED = "Produced"
IN_STOCKYARD = "InStockyard"
RESERVED_FOR_DISPATCH = "ReservedForDispatch"
IN_TRANSIT = "InTransit"
RECEIVED_AT_SITE = "ReceivedAtSite"
ERECTED = "Erected"

LIFECYCLE_ORDER: tuple[str, ...] = (
    PRODUCED,
    IN_STOCKYARD,
    RESERVED_FOR_DISPATCH,
    IN_TRANSIT,
    RECEIVED_AT_SITE,
    ERECTED,
)

_ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PRODUCED: {IN_STOCKYARD},
    IN_STOCKYARD: {RESERVED_FOR_DISPATCH, RECEIVED_AT_SITE},
    RESERVED_FOR_DISPATCH: {IN_TRANSIT, RECEIVED_AT_SITE},
    IN_TRANSIT: {RECEIVED_AT_SITE},
    RECEIVED_AT_SITE: {ERECTED},
    ERECTED: set(),
}

# Mirror kept on element.status for screens that only read the element table.
ELEMENT_STATUS_IN_STOCKYARD = "In Stockyard"
ELEMENT_STATUS_DISPATCH = "Dispatch"
ELEMENT_STATUS_IN_ERECTION = "In Erection"
ELEMENT_STATUS_ERECTED = "Erected"

_IN_DISPATCH_STATES = {RESERVED_FOR_DISPATCH, IN_TRANSIT}
_AT_SITE_STATES = {RECEIVED_AT_SITE, ERECTED}

DISPOSITION_FILTERS: dict[str, tuple[str, ...]] = {
    "all": LIFECYCLE_ORDER,
    "produced": (PRODUCED,),
    "in_stockyard": (IN_STOCKYARD,),
    "dispatched": (RESERVED_FOR_DISPATCH, IN_TRANSIT),
    "at_site": (RECEIVED_AT_SITE,),
    "erected": (ERECTED,),
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def source_states_for(target: str) -> tuple[str, ...]:
    """States from which `target` may be entered, in lifecycle order."""
    if target not in _ALLOWED_TRANSITIONS:
        raise ValueError(f"Unknown lifecycle state: {target}")
    return tuple(state for state in LIFECYCLE_ORDER if target in _ALLOWED_TRANSITIONS[state])


def validate_lifecycle_transition(*, current_state: str, next_state: str) -> str:
    if current_state not in _ALLOWED_TRANSITIONS:
        raise ValueError(f"Unknown lifecycle state: {current_state}")
    if next_state not in _ALLOWED_TRANSITIONS.get(current_state, set()):
        raise ValueError(f"Invalid lifecycle transition: {current_state} -> {next_state}")
    return next_state


def states_for_filter(name: str | None) -> tuple[str, ...]:
    key = (name or "all").strip().lower()
    if key not in DISPOSITION_FILTERS:
        raise ValueError(f"Unknown disposition filter: {name}")
    return DISPOSITION_FILTERS[key]


def derive_disposition_flags(state: str, *, order_by_erection: bool, dispatched: bool = False) -> dict[str, bool]:
    """Legacy boolean view of a lifecycle state.

    `dispatched` says the row went out on a dispatch order (`dispatch_start` set).
    Elements received at site straight from the stockyard never did, so they keep
    `dispatch_status` false after they reach the site.
    """
    if state not in _ALLOWED_TRANSITIONS:
        raise ValueError(f"Unknown lifecycle state: {state}")
    return {
        "stockyard": state != PRODUCED,
        "dispatch_status": state in _IN_DISPATCH_STATES or (dispatched and state in _AT_SITE_STATES),
        "order_by_erection": bool(order_by_erection),
        "received_in_erection": state in _AT_SITE_STATES,
        "erected": state == ERECTED,
    }
