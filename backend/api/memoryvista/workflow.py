from __future__ import annotations

from memoryvista.errors import InvalidTransition
from memoryvista.models import Role

DRAFT = "draft"
REVIEW = "review"
APPROVED = "approved"
ARCHIVED = "archived"

STATES: list[str] = [DRAFT, REVIEW, APPROVED, ARCHIVED]


def list_states() -> list[str]:
    return list(STATES)


# Closed table: anything not listed here is refused, self-transitions included.
_TRANSITIONS: dict[str, list[str]] = {
    DRAFT: [REVIEW, ARCHIVED],
    REVIEW: [APPROVED, DRAFT],
    APPROVED: [ARCHIVED, DRAFT],
    ARCHIVED: [DRAFT],
}

# Moving content forward is editor work; sending it back is an admin call.
# Change requests go through their own entry point (see CHANGE_REQUEST_ROLE).
_REQUIRED_ROLE: dict[tuple[str, str], Role] = {
    (DRAFT, REVIEW): Role.EDITOR,
    (DRAFT, ARCHIVED): Role.EDITOR,
    (REVIEW, APPROVED): Role.EDITOR,
    (APPROVED, ARCHIVED): Role.EDITOR,
    (REVIEW, DRAFT): Role.ADMIN,
    (APPROVED, DRAFT): Role.ADMIN,
    (ARCHIVED, DRAFT): Role.ADMIN,
}

CHANGE_REQUEST_ROLE = Role.EDITOR

_GUIDANCE: dict[str, str] = {
    DRAFT: "Draft content can be submitted for review or archived.",
    REVIEW: "Content in review can be approved or sent back to draft.",
    APPROVED: "Approved content can be archived or reopened as a draft.",
    ARCHIVED: "Archived content can only be restored to draft.",
}


def _normalize_status(status: str | None) -> str:
    if not status:
        return ""
    return status.strip().lower()


def is_known_status(status: str | None) -> bool:
    return _normalize_status(status) in _TRANSITIONS


def allowed_transitions(from_status: str) -> list[str]:
    """
    Returns allowed next statuses from `from_status`.

    Unknown statuses have no way out; they are never an error here.
    """
    s = _normalize_status(from_status)
    if s not in _TRANSITIONS:
        return []
    return list(_TRANSITIONS[s])


def can_transition(from_status: str, to_status: str) -> bool:
    s_from = _normalize_status(from_status)
    s_to = _normalize_status(to_status)
    if s_to not in _TRANSITIONS:
        return False
    return s_to in _TRANSITIONS.get(s_from, [])


def validate_transition(from_status: str, to_status: str) -> None:
    """
    Raises InvalidTransition if the transition is not permitted.

    The message tells the user what they *can* do from here instead of
    dumping the table.
    """
    s_from = _normalize_status(from_status)
    s_to = _normalize_status(to_status)

    if s_to not in _TRANSITIONS:
        raise InvalidTransition(f"Unknown status: {to_status!r}")

    if s_from == s_to:
        raise InvalidTransition(f"Content is already {s_to}.")

    if not can_transition(s_from, s_to):
        hint = _GUIDANCE.get(s_from, "This content cannot change status.")
        raise InvalidTransition(f"Cannot move content from {s_from or 'unknown'} to {s_to}. {hint}")


def required_capability(from_status: str, to_status: str) -> Role:
    """Minimum role needed for a legal transition."""
    key = (_normalize_status(from_status), _normalize_status(to_status))
    if key not in _REQUIRED_ROLE:
        validate_transition(*key)
    return _REQUIRED_ROLE[key]
