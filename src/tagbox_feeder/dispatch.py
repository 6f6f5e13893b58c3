"""Routes tag activity to tagboxes and drives the recompute loop.

Producer side: every installed tagbox sees each batch (it filters for
itself); tagboxes that are nosy for an entity type additionally get one
unit of importance for every tagged globj of that type. Contributions are
written to the feeder log here, never inside a tagbox.

Consumer side: run_most_important() takes the weighted top-N snapshot,
runs each tagbox for its affected id and compacts the log up to the
snapshot's max tfid.

A failing tagbox never blocks the others; store errors propagate.
"""
from __future__ import annotations
import logging
import time
from typing import Callable, Dict, Iterable, List, Sequence
from prometheus_client import Counter, Histogram
from sqlalchemy.exc import SQLAlchemyError
from tagbox_feeder import queries
from tagbox_feeder.errors import TagboxConfigurationError
from tagbox_feeder.events import Contribution, TagEvent, UserChangeEvent
from tagbox_feeder.tagbox import Tagbox

logger = logging.getLogger(__name__)

FEED_FAILURES = Counter('tagbox_feed_failures_total', 'Tagbox feed calls that raised', ['tagbox', 'feed'])
RUN_COMPLETIONS = Counter('tagbox_runs_completed_total', 'Tagbox runs completed and compacted', ['tagbox'])
RUN_FAILURES = Counter('tagbox_run_failures_total', 'Tagbox runs that raised', ['tagbox', 'reason'])
RUN_LATENCY = Histogram('tagbox_run_latency_seconds', 'Latency of one tagbox run', ['tagbox'],
                        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30))


class FeedDispatcher:
    def __init__(self, context):
        self.context = context

    # producer

    def nosy_contributions(self, tagbox: Tagbox, events: Sequence[TagEvent],
                           already: Iterable[Contribution] = ()) -> List[Contribution]:
        """One importance unit per globj whose type the tagbox is nosy about.

        Globjs the tagbox already contributed for in this batch are skipped,
        and an active-only tagbox is never told about inactivated tags.
        Events must carry gtid metadata (see GlobjEssentials).
        """
        if tagbox.affected_type == "user":
            return []
        seen = {c.affected_id for c in already}
        out = []
        for e in events:
            gtid = e.metadata.get("gtid")
            if gtid is None or e.entity_id in seen:
                continue
            if tagbox.filter.active_only and e.is_deactivated:
                continue
            if tagbox.tbid in self.context.interest.modules_interested_in(gtid):
                seen.add(e.entity_id)
                if e.deactivation_id:
                    out.append(Contribution(affected_id=e.entity_id, importance=1, deactivation_id=e.deactivation_id))
                else:
                    out.append(Contribution(affected_id=e.entity_id, importance=1, tag_id=e.tag_id))
        return out

    def _with_nosy(self, feed: Callable[[Tagbox, List], List[Contribution]]):
        def call(tagbox: Tagbox, events: List[TagEvent]) -> List[Contribution]:
            contributions = list(feed(tagbox, events))
            return contributions + self.nosy_contributions(tagbox, events, contributions)
        return call

    def _dispatch(self, feed: str, items: Sequence, call: Callable[[Tagbox, List], List[Contribution]]) -> Dict[str, int]:
        logged: Dict[str, int] = {}
        for tagbox in self.context.registry.tagboxes():
            try:
                contributions = call(tagbox, list(items))
                logged[tagbox.name] = self.context.feeder.append_many(tagbox.tbid, contributions)
            except TagboxConfigurationError as exc:
                FEED_FAILURES.labels(tagbox=tagbox.name, feed=feed).inc()
                self.context.registry.exclude(tagbox.tbid, str(exc))
            except SQLAlchemyError:
                raise
            except Exception:
                FEED_FAILURES.labels(tagbox=tagbox.name, feed=feed).inc()
                logger.exception("tagbox %s failed in %s", tagbox.name, feed)
        return logged

    def feed_new_tags(self, events: Sequence[TagEvent]) -> Dict[str, int]:
        self.context.enricher.attach_metadata(events)
        return self._dispatch("newtags", events, self._with_nosy(lambda tb, ev: tb.feed_new_tags(ev)))

    def feed_deactivated_tags(self, events: Sequence[TagEvent]) -> Dict[str, int]:
        self.context.enricher.attach_metadata(events)
        return self._dispatch("deactivatedtags", events, self._with_nosy(lambda tb, ev: tb.feed_deactivated_tags(ev)))

    def feed_user_changes(self, changes: Sequence[UserChangeEvent]) -> Dict[str, int]:
        return self._dispatch("userchanges", changes, lambda tb, ch: tb.feed_user_changes(ch))

    def record_user_changes(self, uid: int, changes: Dict[str, tuple]) -> List[int]:
        """Log the user-key changes some tagbox has a regex for; returns the new tuids."""
        keys = self.context.interest.keys_requiring_log(list(changes))
        return [self.context.feeder.log_user_change(uid, k, *changes[k]) for k in keys]

    def _read_pending(self, stream: str, after: int, batch_size: int) -> list:
        with self.context.session_factory() as s:
            if stream == "tags":
                items = [TagEvent.from_row(r) for r in s.scalars(queries.select_tags_after(after, batch_size))]
            elif stream == "deactivated":
                items = [TagEvent.from_row(tag, deactivation_id=tdid)
                         for tdid, tag in s.execute(queries.select_deactivations_after(after, batch_size))]
            else:
                items = [
                    UserChangeEvent(
                        user_change_id=r.tuid, user_id=r.uid, user_key=r.user_key,
                        value_old=r.value_old, value_new=r.value_new, created_at=r.created_at,
                    )
                    for r in s.scalars(queries.select_userchanges_after(after, batch_size))
                ]
        if stream != "userchanges":
            self.context.enricher.attach_metadata(items)
        return items

    def feed_pending(self, batch_size: int | None = None) -> Dict[str, int]:
        """Feed every tagbox the tags, deactivations and user changes past its watermarks.

        Each tagbox reads from its own watermarks, so one that keeps failing
        never holds back the others. Tagboxes at the same watermark share one
        read. Contributions and the advanced watermarks are written in one
        transaction per tagbox.
        """
        batch_size = batch_size or self.context.settings.feed_batch_size
        marks = {r["tbid"]: r for r in self.context.registry.load(fields=["tbid", *queries.LOGGED_WATERMARKS])}
        tagboxes = [tb for tb in self.context.registry.tagboxes() if tb.tbid in marks]
        if not tagboxes:
            return {}

        # (stream, watermark) -> items read past it
        reads: Dict[tuple, list] = {}

        def pending(stream: str, after: int) -> list:
            key = (stream, after)
            if key not in reads:
                reads[key] = self._read_pending(stream, after, batch_size)
            return reads[key]

        logged: Dict[str, int] = {}
        for tagbox in tagboxes:
            mark = marks[tagbox.tbid]
            new = pending("tags", mark["last_tagid_logged"] or 0)
            gone = pending("deactivated", mark["last_tdid_logged"] or 0)
            users = pending("userchanges", mark["last_tuid_logged"] or 0)
            if not (new or gone or users):
                continue
            try:
                contributions: List[Contribution] = []
                if new:
                    contributions += self._with_nosy(lambda tb, ev: tb.feed_new_tags(ev))(tagbox, new)
                if gone:
                    contributions += self._with_nosy(lambda tb, ev: tb.feed_deactivated_tags(ev))(tagbox, gone)
                if users:
                    contributions += tagbox.feed_user_changes(users)
                watermarks = {}
                if new:
                    watermarks["last_tagid_logged"] = new[-1].tag_id
                if gone:
                    watermarks["last_tdid_logged"] = gone[-1].deactivation_id
                if users:
                    watermarks["last_tuid_logged"] = users[-1].user_change_id
                logged[tagbox.name] = self.context.feeder.append_many(tagbox.tbid, contributions, watermarks)
            except TagboxConfigurationError as exc:
                FEED_FAILURES.labels(tagbox=tagbox.name, feed="pending").inc()
                self.context.registry.exclude(tagbox.tbid, str(exc))
            except SQLAlchemyError:
                raise
            except Exception:
                FEED_FAILURES.labels(tagbox=tagbox.name, feed="pending").inc()
                logger.exception("tagbox %s failed feeding pending activity", tagbox.name)
        return logged

    # consumer

    def run_most_important(self, limit: int | None = None, min_weightsum: float | None = None) -> dict:
        summary = {"completed": 0, "failed": 0, "skipped": 0, "compacted": 0}
        for agg in self.context.feeder.top_affected(limit, min_weightsum):
            tagbox = self.context.registry.get(agg.module_id)
            if tagbox is None:
                summary["skipped"] += 1
                continue
            start = time.time()
            try:
                tagbox.run(agg.affected_id)
            except TagboxConfigurationError as exc:
                RUN_FAILURES.labels(tagbox=tagbox.name, reason="configuration").inc()
                self.context.registry.exclude(tagbox.tbid, str(exc))
                summary["failed"] += 1
                continue
            except SQLAlchemyError:
                raise
            except Exception:
                RUN_FAILURES.labels(tagbox=tagbox.name, reason="error").inc()
                logger.exception("tagbox %s run(%s) failed", tagbox.name, agg.affected_id)
                summary["failed"] += 1
                continue
            summary["compacted"] += self.context.feeder.complete(agg)
            RUN_LATENCY.labels(tagbox=tagbox.name).observe(time.time() - start)
            RUN_COMPLETIONS.labels(tagbox=tagbox.name).inc()
            summary["completed"] += 1
        return summary
