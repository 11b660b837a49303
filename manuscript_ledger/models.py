from __future__ import annotations

import time
import uuid
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from manuscript_ledger import MAX_TAGS, __schema__
from manuscript_ledger.errors import TagCapacityExceeded


def now_utc() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

def new_id(prefix: str) -> str:
    """
    Generate a time-ordered event ID.

    Format: {prefix}_{timestamp_ms:013x}_{random:016x}
    """
    timestamp_ms = int(time.time() * 1000)
    random_bits = uuid.uuid4().hex[:16]  # 64 random bits
    return f"{prefix}_{timestamp_ms:013x}_{random_bits}"


class ManuscriptRecord(BaseModel):
    """
    Metadata entry for one registered manuscript.

    registration_height is fixed at creation. classification_tags only grows
    through append_tag, which fails at capacity instead of truncating.
    """
    manuscript_id: int
    title: str
    custodian: str
    storage_size: int = Field(ge=0)
    registration_height: int
    synopsis: str = ""
    classification_tags: List[str] = Field(default_factory=list)

    def append_tag(self, tag: str) -> None:
        if len(self.classification_tags) >= MAX_TAGS:
            raise TagCapacityExceeded(
                f"Manuscript {self.manuscript_id} already carries {MAX_TAGS} tags",
                manuscript_id=self.manuscript_id,
            )
        self.classification_tags.append(tag)


class GrantEntry(BaseModel):
    manuscript_id: int
    viewer: str
    granted: bool = True


class ManuscriptAnalytics(BaseModel):
    manuscript_id: int
    tenure: int
    storage_size: int
    tag_count: int
    registration_height: int
    current_height: int
    storage_ratio: int  # integer percent of the storage capacity ceiling


class AuthenticityReport(BaseModel):
    manuscript_id: int
    claimed_custodian: str
    authentic: bool
    tenure: int
    current_height: int


# Provenance events appended to the ledger after each committed mutation

class ManuscriptRegistered(BaseModel):
    kind: Literal["ManuscriptRegistered"] = "ManuscriptRegistered"
    schema_version: str = Field(default=__schema__, alias="schema")
    event_id: str = Field(default_factory=lambda: new_id("mr"))
    created_utc: str = Field(default_factory=now_utc)
    manuscript_id: int
    custodian: str
    record_hash: str  # binds the event to the registered metadata
    storage_size: int
    registration_height: int

    model_config = {"populate_by_name": True}

class ViewGranted(BaseModel):
    kind: Literal["ViewGranted"] = "ViewGranted"
    schema_version: str = Field(default=__schema__, alias="schema")
    event_id: str = Field(default_factory=lambda: new_id("vg"))
    created_utc: str = Field(default_factory=now_utc)
    manuscript_id: int
    custodian: str
    viewer: str

    model_config = {"populate_by_name": True}

class ViewRevoked(BaseModel):
    kind: Literal["ViewRevoked"] = "ViewRevoked"
    schema_version: str = Field(default=__schema__, alias="schema")
    event_id: str = Field(default_factory=lambda: new_id("vr"))
    created_utc: str = Field(default_factory=now_utc)
    manuscript_id: int
    custodian: str
    viewer: str

    model_config = {"populate_by_name": True}

class CustodyTransferred(BaseModel):
    kind: Literal["CustodyTransferred"] = "CustodyTransferred"
    schema_version: str = Field(default=__schema__, alias="schema")
    event_id: str = Field(default_factory=lambda: new_id("ct"))
    created_utc: str = Field(default_factory=now_utc)
    manuscript_id: int
    previous_custodian: str
    new_custodian: str

    model_config = {"populate_by_name": True}

class RestrictionEnforced(BaseModel):
    kind: Literal["RestrictionEnforced"] = "RestrictionEnforced"
    schema_version: str = Field(default=__schema__, alias="schema")
    event_id: str = Field(default_factory=lambda: new_id("re"))
    created_utc: str = Field(default_factory=now_utc)
    manuscript_id: int
    enforced_by: str
    tag: str

    model_config = {"populate_by_name": True}

class ArchivalDesignated(BaseModel):
    kind: Literal["ArchivalDesignated"] = "ArchivalDesignated"
    schema_version: str = Field(default=__schema__, alias="schema")
    event_id: str = Field(default_factory=lambda: new_id("ad"))
    created_utc: str = Field(default_factory=now_utc)
    manuscript_id: int
    custodian: str
    tag: str

    model_config = {"populate_by_name": True}

class ManuscriptRemoved(BaseModel):
    kind: Literal["ManuscriptRemoved"] = "ManuscriptRemoved"
    schema_version: str = Field(default=__schema__, alias="schema")
    event_id: str = Field(default_factory=lambda: new_id("rm"))
    created_utc: str = Field(default_factory=now_utc)
    manuscript_id: int
    custodian: str
    record_hash: str  # hash of the metadata as it was before removal
    released_bytes: int
    reason: Optional[str] = None

    model_config = {"populate_by_name": True}
