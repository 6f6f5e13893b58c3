"""Plain records passed between the feeder stages.

TagEvent is what producers hand to a tagbox, Contribution is what a tagbox
hands back, and AffectedAggregate is one row of the weighted top-N query.
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class TagEvent:
    tag_id: int
    entity_id: int
    user_id: int
    tag_name_id: int
    created_at: datetime
    inactivated: Optional[datetime] = None
    deactivation_id: Optional[int] = None
    user_change_id: Optional[int] = None
    # denormalized globj data added by the metadata enricher
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_deactivated(self) -> bool:
        return self.inactivated is not None

    @property
    def kind(self) -> str:
        if self.deactivation_id:
            return "deactivation"
        if self.user_change_id:
            return "userchange"
        return "new"

    def get(self, column: str):
        """Read a value by its tags-table column name (uid, globjid, ...)."""
        return getattr(self, COLUMN_TO_ATTR.get(column, column))

    @classmethod
    def from_row(cls, row, deactivation_id: Optional[int] = None) -> "TagEvent":
        return cls(
            tag_id=row.tagid,
            entity_id=row.globjid,
            user_id=row.uid,
            tag_name_id=row.tagnameid,
            created_at=row.created_at,
            inactivated=row.inactivated,
            deactivation_id=deactivation_id,
        )


COLUMN_TO_ATTR = {
    "tagid": "tag_id",
    "globjid": "entity_id",
    "uid": "user_id",
    "tagnameid": "tag_name_id",
    "tdid": "deactivation_id",
    "tuid": "user_change_id",
}


@dataclass
class UserChangeEvent:
    user_change_id: int
    user_id: int
    user_key: str
    value_old: Optional[str]
    value_new: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class Contribution:
    """One unit of importance for an affected id.

    At most one of tag_id / deactivation_id / user_change_id is set.
    """
    affected_id: int
    importance: float = 1.0
    tag_id: Optional[int] = None
    deactivation_id: Optional[int] = None
    user_change_id: Optional[int] = None

    def __post_init__(self):
        refs = [r for r in (self.tag_id, self.deactivation_id, self.user_change_id) if r is not None]
        if len(refs) > 1:
            raise ValueError("a contribution references at most one source row")


@dataclass(frozen=True)
class AffectedAggregate:
    module_id: int
    affected_id: int
    max_entry_id: int
    sum_weighted_importance: float

    def to_dict(self) -> dict:
        return asdict(self)
