"""Append-only feeder log and the weighted aggregate that drains it.

Producers append contributions; the run loop calls top_affected() to pick
what to recompute, then mark_run_complete() with the max_entry_id captured
by that same top_affected() row. Only rows at or below that bound are
deleted, so anything appended after the snapshot is counted next cycle.
"""
from __future__ import annotations
import logging
from typing import Iterable, List, Optional
from prometheus_client import Counter
from tagbox_feeder import queries
from tagbox_feeder.events import AffectedAggregate, Contribution
from tagbox_feeder.models.tables import TagboxLogFeeder, TagDeactivated, TagUserChange, utcnow

logger = logging.getLogger(__name__)

CONTRIBUTIONS_LOGGED = Counter('tagbox_contributions_logged_total', 'Feeder log rows written', ['kind'])
FEEDER_ROWS_COMPACTED = Counter('tagbox_feeder_rows_compacted_total', 'Feeder log rows deleted after a completed run')


class FeederLog:
    def __init__(self, session_factory, settings):
        self.session_factory = session_factory
        self.settings = settings

    def _append(self, s, tbid: int, c: Contribution) -> TagboxLogFeeder:
        row = TagboxLogFeeder(
            tbid=tbid,
            affected_id=c.affected_id,
            importance=c.importance,
            tagid=c.tag_id,
            tdid=c.deactivation_id,
            tuid=c.user_change_id,
        )
        s.add(row)
        return row

    def append(self, tbid: int, contribution: Contribution) -> int:
        with self.session_factory() as s:
            row = self._append(s, tbid, contribution)
            s.flush()
            tfid = row.tfid
            s.commit()
        CONTRIBUTIONS_LOGGED.labels(kind="organic").inc()
        return tfid

    def append_many(self, tbid: int, contributions: Iterable[Contribution], watermarks: Optional[dict] = None) -> int:
        """Append contributions and, in the same transaction, advance logged watermarks."""
        count = 0
        with self.session_factory() as s:
            for c in contributions:
                self._append(s, tbid, c)
                count += 1
            if watermarks:
                s.execute(queries.update_logged(tbid, watermarks))
            s.commit()
        if count:
            CONTRIBUTIONS_LOGGED.labels(kind="organic").inc(count)
        return count

    def force_recalc(self, tbid: int, affected_id: int) -> int:
        with self.session_factory() as s:
            row = TagboxLogFeeder(tbid=tbid, affected_id=affected_id, importance=self.settings.force_recalc_importance)
            s.add(row)
            s.flush()
            tfid = row.tfid
            s.commit()
        CONTRIBUTIONS_LOGGED.labels(kind="forced").inc()
        return tfid

    def top_affected(self, limit: int | None = None, min_weightsum: float | None = None) -> List[AffectedAggregate]:
        limit = limit or self.settings.feeder_top_limit
        min_weightsum = min_weightsum or self.settings.feeder_min_weightsum
        with self.session_factory() as s:
            rows = s.execute(queries.select_top_affected(limit, min_weightsum)).all()
        return [
            AffectedAggregate(
                module_id=r.tbid,
                affected_id=r.affected_id,
                max_entry_id=r.max_tfid,
                sum_weighted_importance=float(r.sum_imp_weight),
            )
            for r in rows
        ]

    def mark_run_complete(self, tbid: int, affected_id: int, max_entry_id: int) -> int:
        with self.session_factory() as s:
            res = s.execute(queries.delete_feeder_through(tbid, affected_id, max_entry_id))
            s.execute(queries.update_run_completed(tbid, utcnow()))
            s.commit()
        deleted = res.rowcount or 0
        FEEDER_ROWS_COMPACTED.inc(deleted)
        return deleted

    def complete(self, aggregate: AffectedAggregate) -> int:
        return self.mark_run_complete(aggregate.module_id, aggregate.affected_id, aggregate.max_entry_id)

    def mark_logged(self, tbid: int, **watermarks) -> None:
        if not watermarks:
            return
        with self.session_factory() as s:
            s.execute(queries.update_logged(tbid, watermarks))
            s.commit()

    def log_deactivated_tags(self, tag_ids: Optional[Iterable[int]]) -> int:
        if not tag_ids:
            return 0
        logged = 0
        with self.session_factory() as s:
            for tagid in tag_ids:
                s.add(TagDeactivated(tagid=tagid))
                logged += 1
            s.commit()
        return logged

    def log_user_change(self, uid: int, name: str, old, new) -> int:
        with self.session_factory() as s:
            row = TagUserChange(uid=uid, user_key=name, value_old=old, value_new=new)
            s.add(row)
            s.flush()
            tuid = row.tuid
            s.commit()
        return tuid
