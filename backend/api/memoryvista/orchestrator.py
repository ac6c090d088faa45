"""
Status changes for content items.

Every change follows the same path: read the item, refuse early if the actor
has no editing rights or the move is not in the transition table, check the
exact capability the move needs, then write status + history in one
transaction guarded by the version that was read. A lost race surfaces as
ConcurrentModification and is retried with fresh state a bounded number of
times; every other error goes straight back to the caller.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple, TypeVar

from sqlalchemy.engine import Engine
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from memoryvista import repo
from memoryvista.errors import ConcurrentModification, InvalidTransition, PermissionDenied, ValidationError
from memoryvista.models import ContentItem, HistoryType, Role
from memoryvista.permissions import PermissionOracle
from memoryvista.repo import StatusChange
from memoryvista.workflow import (
    CHANGE_REQUEST_ROLE,
    DRAFT,
    allowed_transitions,
    is_known_status,
    required_capability,
    validate_transition,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

# Every transition needs at least this much; anyone below is turned away
# before learning anything about the item's state.
_MIN_TRANSITION_ROLE = Role.EDITOR


class WorkflowOrchestrator:
    def __init__(
        self,
        engine: Engine,
        oracle: PermissionOracle,
        max_retries: int = 3,
        retry_jitter: float = 0.05,
    ) -> None:
        self._engine = engine
        self._oracle = oracle
        self.max_retries = max_retries
        self._retry_jitter = retry_jitter

    # ---------------------------------
    # Public operations
    # ---------------------------------

    def request_transition(self, content_id: str, to_status: str, actor: str) -> ContentItem:
        content_id, actor = _require_ids(content_id, actor)
        target = (to_status or "").strip().lower()
        if not is_known_status(target):
            raise InvalidTransition(f"Unknown status: {to_status!r}")

        return self._with_retries(lambda: self._transition_once(content_id, target, actor))

    def request_changes(self, content_id: str, reason: str, actor: str) -> ContentItem:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Please provide a reason for requesting changes")
        content_id, actor = _require_ids(content_id, actor)

        return self._with_retries(lambda: self._request_changes_once(content_id, reason, actor))

    def available_actions(self, content_id: str, actor: str) -> Tuple[ContentItem, List[str]]:
        """The item plus the statuses `actor` could move it to right now."""
        content_id, actor = _require_ids(content_id, actor)
        item = repo.read_document(self._engine, content_id)
        if not self._oracle.authorize(actor, item.profile_id, _MIN_TRANSITION_ROLE):
            return item, []
        targets = [
            target
            for target in allowed_transitions(item.status)
            if self._oracle.authorize(actor, item.profile_id, required_capability(item.status, target))
        ]
        return item, targets

    # ---------------------------------
    # Single attempts
    # ---------------------------------

    def _transition_once(self, content_id: str, target: str, actor: str) -> ContentItem:
        snapshot = repo.read_document(self._engine, content_id)
        self._check_role(actor, snapshot, _MIN_TRANSITION_ROLE)
        validate_transition(snapshot.status, target)

        needed = required_capability(snapshot.status, target)
        if needed is not _MIN_TRANSITION_ROLE:
            self._check_role(actor, snapshot, needed)

        return self._commit(snapshot, StatusChange(to_status=target, actor=actor))

    def _request_changes_once(self, content_id: str, reason: str, actor: str) -> ContentItem:
        snapshot = repo.read_document(self._engine, content_id)
        self._check_role(actor, snapshot, CHANGE_REQUEST_ROLE)
        validate_transition(snapshot.status, DRAFT)

        change = StatusChange(
            to_status=DRAFT,
            actor=actor,
            entry_type=HistoryType.CHANGE_REQUEST.value,
            reason=reason,
        )
        return self._commit(snapshot, change)

    def _check_role(self, actor: str, item: ContentItem, needed: Role) -> None:
        if not self._oracle.authorize(actor, item.profile_id, needed):
            log.info("Denied %s on content %s", actor, item.id)
            raise PermissionDenied()

    def _commit(self, snapshot: ContentItem, change: StatusChange) -> ContentItem:
        def unchanged(current: ContentItem) -> bool:
            return current.status == snapshot.status and current.version == snapshot.version

        updated = repo.atomic_read_modify_write(
            self._engine, snapshot.id, unchanged, lambda _current: change
        )
        log.info(
            "Content %s: %s -> %s (%s) by %s",
            snapshot.id,
            snapshot.status,
            change.to_status,
            change.entry_type,
            change.actor,
        )
        return updated

    def _with_retries(self, attempt: Callable[[], T]) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_random(0, self._retry_jitter),
            retry=retry_if_exception_type(ConcurrentModification),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True,
        )
        return retrying(attempt)


def _require_ids(content_id: Optional[str], actor: Optional[str]) -> Tuple[str, str]:
    content_id = (content_id or "").strip()
    actor = (actor or "").strip()
    if not content_id:
        raise ValidationError("content_id is required")
    if not actor:
        raise ValidationError("actor identity is required")
    return content_id, actor
