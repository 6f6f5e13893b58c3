from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional
from prometheus_client import Histogram
from tagbox_feeder import queries
from tagbox_feeder.events import TagEvent

logger = logging.getLogger(__name__)

HISTORY_FETCH_SIZE = Histogram('tagbox_history_fetch_tags', 'Tags returned by a tagbox history fetch',
                               buckets=(0, 1, 10, 100, 1000, 10000, 100000))


def other_dimension(dimension: str) -> str:
    return "globjid" if dimension == "uid" else "uid"


class TagHistoryFetcher:
    """Fetch every tag a tagbox needs to recompute one affected id.

    The base query selects tags on the tagbox's affected dimension (uid for
    user tagboxes, globjid otherwise). Each extra hop flips to the other
    dimension and re-selects by the distinct ids seen in the current set,
    so extra_hops=1 from an object yields all tags by every user who tagged
    it. Every hop is time-bounded and passed through the tagbox's filter.
    """

    def __init__(self, context):
        self.context = context

    def _select(self, dimension: str, ids, max_time: Optional[datetime]) -> List[TagEvent]:
        with self.context.session_factory() as s:
            rows = s.scalars(queries.select_tag_history(dimension, ids, max_time)).all()
        return [TagEvent.from_row(r) for r in rows]

    def fetch(self, tbid: int, affected_id: int, extra_hops: int = 0, max_time: Optional[datetime] = None,
              type: Optional[str] = None) -> List[TagEvent]:
        if not tbid:
            logger.warning("tag history fetch for affected_id=%s called without a tagbox id", affected_id)
            return []
        tagbox = self.context.registry.get(tbid)
        if tagbox is None:
            logger.warning("tag history fetch for unknown tagbox %s", tbid)
            return []
        extra_hops = extra_hops or 0
        affected_type = type or tagbox.affected_type
        dimension = "uid" if affected_type == "user" else "globjid"
        tagbox.debug_log("fetch(%d, %d, %d), type=%s", tbid, affected_id, extra_hops, affected_type)

        events = tagbox.feed_new_tags_filter(self._select(dimension, [affected_id], max_time))
        tagbox.debug_log("%s=%s filtered=%d", dimension, affected_id, len(events))

        while extra_hops > 0:
            dimension = other_dimension(dimension)
            ids = {e.get(dimension) for e in events}
            if not ids:
                events = []
                break
            events = tagbox.feed_new_tags_filter(self._select(dimension, ids, max_time))
            tagbox.debug_log("hop %d: %s ids=%d filtered=%d", extra_hops, dimension, len(ids), len(events))
            extra_hops -= 1

        self.context.enricher.attach_metadata(events)
        HISTORY_FETCH_SIZE.observe(len(events))
        return events
