from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from mediatag.schemas.audit import AuditTrail
from mediatag.schemas.media import MediaKind


class TagStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    REJECTED = "rejected"


class MediaUrls(BaseModel):
    image: List[str] = Field(default_factory=list)
    video: List[str] = Field(default_factory=list)
    audio: List[str] = Field(default_factory=list)

    def for_kind(self, kind: MediaKind) -> List[str]:
        return getattr(self, kind.value)

    def all(self) -> List[str]:
        return [*self.image, *self.video, *self.audio]

    @property
    def total(self) -> int:
        return len(self.image) + len(self.video) + len(self.audio)


class TagCreate(BaseModel):
    file_name: str
    description: str = ""
    fingerprint: str
    media_cid: str
    metadata_cid: str
    owner_address: str
    media_kind: MediaKind
    media_urls: MediaUrls = Field(default_factory=MediaUrls)
    file_size: Optional[int] = Field(None, ge=0)
    status: TagStatus = TagStatus.ACTIVE


class TagUpdate(BaseModel):
    """Writable subset of a Tag. Identity fields (fingerprint, CIDs, owner) are never editable."""

    file_name: Optional[str] = None
    description: Optional[str] = None
    media_kind: Optional[MediaKind] = None
    media_urls: Optional[MediaUrls] = None
    file_size: Optional[int] = Field(None, ge=0)
    status: Optional[TagStatus] = None


class Tag(BaseModel):
    id: str
    file_name: str
    description: str = ""
    fingerprint: str
    media_cid: str
    metadata_cid: str
    owner_address: str
    media_kind: MediaKind
    media_urls: MediaUrls
    file_size: Optional[int] = None
    file_count: int = 1
    is_bulk: bool = False
    status: TagStatus = TagStatus.ACTIVE
    view_count: int = 0
    like_count: int = 0
    audit_trail_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def primary_media_url(self) -> Optional[str]:
        urls = self.media_urls.for_kind(self.media_kind)
        return urls[0] if urls else None


class TagResponse(BaseModel):
    tag: Tag
    audit_trail: Optional[AuditTrail] = None
