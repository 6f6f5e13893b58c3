from __future__ import annotations
from pydantic import BaseModel, Field, ValidationError
from datetime import datetime
from typing import Optional
from tagbox_feeder.events import TagEvent, UserChangeEvent


class TagEventSchema(BaseModel):
    tagid: int = Field(gt=0)
    globjid: int = Field(gt=0)
    uid: int = Field(ge=0)
    tagnameid: int = Field(gt=0)
    created_at: datetime
    inactivated: Optional[datetime] = None
    tdid: Optional[int] = Field(default=None, gt=0)


class UserChangeSchema(BaseModel):
    tuid: int = Field(gt=0)
    uid: int = Field(ge=0)
    user_key: str = Field(min_length=1, max_length=64)
    value_old: Optional[str] = None
    value_new: Optional[str] = None
    created_at: datetime


def parse_tag_events(payloads: list[dict]) -> tuple[list[TagEvent], list[str]]:
    """Validate raw tag payloads; returns (events, errors) with one error string per rejected payload."""
    events, errors = [], []
    for p in payloads:
        try:
            m = TagEventSchema(**p)
        except ValidationError as ve:
            errors.append(f"validation_error:{ve.errors()[0].get('msg', 'invalid')}")
            continue
        events.append(TagEvent(
            tag_id=m.tagid,
            entity_id=m.globjid,
            user_id=m.uid,
            tag_name_id=m.tagnameid,
            created_at=m.created_at,
            inactivated=m.inactivated,
            deactivation_id=m.tdid,
        ))
    return events, errors


def parse_user_changes(payloads: list[dict]) -> tuple[list[UserChangeEvent], list[str]]:
    changes, errors = [], []
    for p in payloads:
        try:
            m = UserChangeSchema(**p)
        except ValidationError as ve:
            errors.append(f"validation_error:{ve.errors()[0].get('msg', 'invalid')}")
            continue
        changes.append(UserChangeEvent(
            user_change_id=m.tuid,
            user_id=m.uid,
            user_key=m.user_key,
            value_old=m.value_old,
            value_new=m.value_new,
            created_at=m.created_at,
        ))
    return changes, errors
