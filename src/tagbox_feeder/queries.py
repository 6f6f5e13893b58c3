"""Statement builders for every query the feeder issues.

All SQL goes through SQLAlchemy Core so ids, time bounds and thresholds are
bound parameters. Builders return unexecuted statements; callers own the
session. Keeping them pure lets tests compile and inspect them without a
database.
"""
from __future__ import annotations
from datetime import datetime
from typing import Iterable, Optional
from sqlalchemy import select, delete, update, func, Select, Delete, Update
from tagbox_feeder.models.tables import (
    Tagbox, TagboxUserKeyRegex, Tag, TagDeactivated, TagUserChange, TagboxLogFeeder, Globj, GlobjType,
)

WATERMARK_COLUMNS = ("last_run_completed", "last_tagid_logged", "last_tdid_logged", "last_tuid_logged")
LOGGED_WATERMARKS = ("last_tagid_logged", "last_tdid_logged", "last_tuid_logged")

# dimension name -> tags column
TAG_DIMENSIONS = {
    "uid": Tag.uid,
    "globjid": Tag.globjid,
}


def select_tagboxes() -> Select:
    return select(Tagbox).order_by(Tagbox.tbid)


def select_userkeyregexes() -> Select:
    return select(TagboxUserKeyRegex.name, TagboxUserKeyRegex.userkeyregex).order_by(
        TagboxUserKeyRegex.name, TagboxUserKeyRegex.userkeyregex
    )


def select_watermarks() -> Select:
    return select(Tagbox.tbid, *(getattr(Tagbox, c) for c in WATERMARK_COLUMNS))


def select_tag_history(dimension: str, ids: Iterable[int], max_time: Optional[datetime] = None) -> Select:
    """Tags keyed by one dimension (uid or globjid), oldest tagid first."""
    column = TAG_DIMENSIONS[dimension]
    id_list = sorted(set(ids))
    stmt = select(Tag)
    if len(id_list) == 1:
        stmt = stmt.where(column == id_list[0])
    else:
        stmt = stmt.where(column.in_(id_list))
    if max_time is not None:
        stmt = stmt.where(Tag.created_at <= max_time)
    return stmt.order_by(Tag.tagid)


def select_globjids_of_types(globjids: Iterable[int], gtids: Iterable[int]) -> Select:
    return select(Globj.globjid).where(
        Globj.globjid.in_(sorted(set(globjids))),
        Globj.gtid.in_(sorted(set(gtids))),
    )


def select_globj_essentials(globjids: Iterable[int]) -> Select:
    return (
        select(Globj.globjid, Globj.gtid, Globj.target_id, GlobjType.maintable)
        .join(GlobjType, GlobjType.gtid == Globj.gtid)
        .where(Globj.globjid.in_(sorted(set(globjids))))
    )


def select_globj_types() -> Select:
    return select(GlobjType.gtid, GlobjType.maintable).order_by(GlobjType.gtid)


def select_tags_after(tagid: int, limit: int) -> Select:
    return select(Tag).where(Tag.tagid > tagid).order_by(Tag.tagid).limit(limit)


def select_deactivations_after(tdid: int, limit: int) -> Select:
    return (
        select(TagDeactivated.tdid, Tag)
        .join(Tag, Tag.tagid == TagDeactivated.tagid)
        .where(TagDeactivated.tdid > tdid)
        .order_by(TagDeactivated.tdid)
        .limit(limit)
    )


def select_userchanges_after(tuid: int, limit: int) -> Select:
    return select(TagUserChange).where(TagUserChange.tuid > tuid).order_by(TagUserChange.tuid).limit(limit)


def select_top_affected(limit: int, min_weightsum: float) -> Select:
    """Grouped aggregate: per (tbid, affected_id) max tfid and sum(importance * weight).

    Groups below min_weightsum are dropped; the rest are ordered by weighted
    sum descending with tbid/affected_id as a stable tiebreak.
    """
    sum_imp_weight = func.sum(TagboxLogFeeder.importance * Tagbox.weight).label("sum_imp_weight")
    max_tfid = func.max(TagboxLogFeeder.tfid).label("max_tfid")
    return (
        select(TagboxLogFeeder.tbid, TagboxLogFeeder.affected_id, max_tfid, sum_imp_weight)
        .join(Tagbox, Tagbox.tbid == TagboxLogFeeder.tbid)
        .group_by(TagboxLogFeeder.tbid, TagboxLogFeeder.affected_id)
        .having(func.sum(TagboxLogFeeder.importance * Tagbox.weight) >= min_weightsum)
        .order_by(sum_imp_weight.desc(), TagboxLogFeeder.tbid, TagboxLogFeeder.affected_id)
        .limit(limit)
    )


def delete_feeder_through(tbid: int, affected_id: int, max_tfid: int) -> Delete:
    return delete(TagboxLogFeeder).where(
        TagboxLogFeeder.tbid == tbid,
        TagboxLogFeeder.affected_id == affected_id,
        TagboxLogFeeder.tfid <= max_tfid,
    )


def update_run_completed(tbid: int, when: datetime) -> Update:
    return update(Tagbox).where(Tagbox.tbid == tbid).values(last_run_completed=when)


def update_logged(tbid: int, values: dict) -> Update:
    bad = set(values) - set(LOGGED_WATERMARKS)
    if bad:
        raise ValueError(f"not a logged watermark: {', '.join(sorted(bad))}")
    return update(Tagbox).where(Tagbox.tbid == tbid).values(**values)

