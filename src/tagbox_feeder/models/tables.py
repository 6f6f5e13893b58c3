from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy import String, Integer, DateTime, JSON, ForeignKey, Float, Index, BigInteger
from sqlalchemy.orm import Mapped, mapped_column
from tagbox_feeder.infrastructure.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tagbox(Base):
    """One row per scoring module.

    The four last_* columns are watermarks written by the feeder and the
    run loop; everything else is deployment configuration. Free-form
    settings (filters, debug level, module-specific knobs) live in `params`.
    """
    __tablename__ = "tagboxes"
    tbid: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    affected_type: Mapped[str] = mapped_column(String(16), default="object")  # object|user
    nosy_gtids: Mapped[str] = mapped_column(String(255), default="")  # space separated gtids
    weight: Mapped[float] = mapped_column(Float, default=1.0)
    params: Mapped[dict] = mapped_column(JSON, default=dict)
    last_run_completed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    last_tagid_logged: Mapped[int] = mapped_column(Integer, default=0)
    last_tdid_logged: Mapped[int] = mapped_column(Integer, default=0)
    last_tuid_logged: Mapped[int] = mapped_column(Integer, default=0)


class TagboxUserKeyRegex(Base):
    __tablename__ = "tagbox_userkeyregexes"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64), ForeignKey("tagboxes.name"), index=True)
    userkeyregex: Mapped[str] = mapped_column(String(255))
    __table_args__ = (
        Index("ux_tagbox_userkeyregex", "name", "userkeyregex", unique=True),
    )


class GlobjType(Base):
    __tablename__ = "globj_types"
    gtid: Mapped[int] = mapped_column(Integer, primary_key=True)
    maintable: Mapped[str] = mapped_column(String(64), unique=True)


class Globj(Base):
    """Global object: anything that can be tagged."""
    __tablename__ = "globjs"
    globjid: Mapped[int] = mapped_column(Integer, primary_key=True)
    gtid: Mapped[int] = mapped_column(Integer, ForeignKey("globj_types.gtid"), index=True)
    target_id: Mapped[int] = mapped_column(Integer, index=True)
    __table_args__ = (
        Index("ux_globj_target", "gtid", "target_id", unique=True),
    )


class Tag(Base):
    __tablename__ = "tags"
    tagid: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tagnameid: Mapped[int] = mapped_column(Integer, index=True)
    globjid: Mapped[int] = mapped_column(Integer, ForeignKey("globjs.globjid"), index=True)
    uid: Mapped[int] = mapped_column(Integer, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    inactivated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    private: Mapped[int] = mapped_column(Integer, default=0)
    __table_args__ = (
        Index("ix_tags_globjid_tagid", "globjid", "tagid"),
        Index("ix_tags_uid_tagid", "uid", "tagid"),
    )


class TagDeactivated(Base):
    __tablename__ = "tags_deactivated"
    tdid: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tagid: Mapped[int] = mapped_column(Integer, ForeignKey("tags.tagid"), index=True)


class TagUserChange(Base):
    __tablename__ = "tags_userchange"
    tuid: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    uid: Mapped[int] = mapped_column(Integer, index=True)
    user_key: Mapped[str] = mapped_column(String(64))
    value_old: Mapped[str | None] = mapped_column(String(255), default=None)
    value_new: Mapped[str | None] = mapped_column(String(255), default=None)


class TagboxLogFeeder(Base):
    """Append-only contribution log.

    tfid is the only ordering key compaction relies on; rows are never
    updated, only deleted up to a captured max tfid.
    """
    __tablename__ = "tagboxlog_feeder"
    tfid: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    tbid: Mapped[int] = mapped_column(Integer, ForeignKey("tagboxes.tbid"), index=True)
    affected_id: Mapped[int] = mapped_column(Integer)
    importance: Mapped[float] = mapped_column(Float, default=1.0)
    tagid: Mapped[int | None] = mapped_column(Integer, default=None)
    tdid: Mapped[int | None] = mapped_column(Integer, default=None)
    tuid: Mapped[int | None] = mapped_column(Integer, default=None)
    __table_args__ = (
        Index("ix_feeder_tbid_affected", "tbid", "affected_id", "tfid"),
        # never reuse a deleted tfid
        {"sqlite_autoincrement": True},
    )
