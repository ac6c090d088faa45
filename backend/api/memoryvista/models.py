from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def satisfies(self, required: "Role") -> bool:
        return self.rank >= required.rank


_ROLE_RANK = {
    Role.VIEWER: 1,
    Role.CONTRIBUTOR: 2,
    Role.EDITOR: 3,
    Role.ADMIN: 4,
}


class HistoryType(str, Enum):
    STATUS_CHANGE = "status_change"
    CHANGE_REQUEST = "change_request"


class ResourceType(str, Enum):
    UNIVERSITY = "university"
    PROFILE = "profile"


@dataclass(frozen=True)
class HistoryEntry:
    seq: int
    type: str
    from_status: str
    to_status: str
    by: str
    timestamp: datetime
    reason: Optional[str] = None


@dataclass(frozen=True)
class ContentItem:
    id: str
    title: str
    university_id: str
    profile_id: str
    status: str
    version: int
    created_by: str
    created_at: datetime
    updated_by: str
    updated_at: datetime
    history: tuple[HistoryEntry, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PermissionGrant:
    identity: str
    resource_id: str
    resource_type: str
    role: Role
    granted_by: str
    granted_at: datetime


@dataclass(frozen=True)
class Profile:
    id: str
    university_id: str
    name: str


@dataclass(frozen=True)
class University:
    id: str
    slug: str
    name: str
