from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ConfigDict

from memoryvista.models import Role

ContentStatus = Literal["draft", "review", "approved", "archived"]


class UniversityCreateIn(BaseModel):
    slug: str = Field(..., min_length=1, max_length=120)
    name: str = Field(..., min_length=1, max_length=400)


class UniversityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    name: str


class ProfileCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=400)


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    university_id: str
    name: str


class ContentCreateIn(BaseModel):
    profile_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=400)


class HistoryEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    seq: int
    type: Literal["status_change", "change_request"]
    from_status: ContentStatus
    to_status: ContentStatus
    by: str
    reason: Optional[str] = None
    timestamp: datetime


class ContentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    university_id: str
    profile_id: str
    status: ContentStatus
    version: int
    created_by: str
    created_at: datetime
    updated_by: str
    updated_at: datetime
    history: List[HistoryEntryOut] = Field(default_factory=list)


class ContentListOut(BaseModel):
    items: List[ContentOut]
    limit: int
    offset: int
    total: int


class AllowedTransitionsOut(BaseModel):
    content_id: str
    from_status: ContentStatus
    allowed: List[ContentStatus]


# Plain strings on purpose: unknown statuses and blank reasons are answered by
# the workflow layer with its own error kinds, not a 422.
class TransitionIn(BaseModel):
    to_status: str


class ChangeRequestIn(BaseModel):
    reason: str


class GrantIn(BaseModel):
    role: str


class GrantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    identity: str
    resource_id: str
    resource_type: Literal["university", "profile"]
    role: Role
    granted_by: str
    granted_at: datetime


class ErrorOut(BaseModel):
    error: str
    detail: str
