from __future__ import annotations
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence
from prometheus_client import Counter
from tagbox_feeder.events import TagEvent

EVENTS_FILTERED = Counter('tagbox_events_filtered_total', 'Tag events dropped by a tagbox filter stage', ['stage'])


def _as_id_set(value) -> Optional[FrozenSet[int]]:
    """Accept a single id, a space separated string or a list; None/empty means unset."""
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, str):
        return frozenset(int(v) for v in value.split() if v.strip())
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(int(v) for v in value)
    return frozenset([int(value)])


@dataclass(frozen=True)
class EventFilter:
    """Narrows a batch of tag events to the ones a tagbox cares about.

    Stages run in this order and each is skipped when unset:
      1. active_only: drop tags that have been inactivated.
      2. tag_name_ids: keep tags whose tagnameid is allowed.
      3. entity_types: keep tags whose globj has an allowed gtid, resolved
         with one batched lookup for the whole batch.
    """
    active_only: bool = False
    tag_name_ids: Optional[FrozenSet[int]] = None
    entity_types: Optional[FrozenSet[int]] = None
    type_lookup: object = None

    @classmethod
    def from_params(cls, params: dict, type_lookup=None) -> "EventFilter":
        return cls(
            active_only=bool(params.get("filter_activeonly")),
            tag_name_ids=_as_id_set(params.get("filter_tagnameid")),
            entity_types=_as_id_set(params.get("filter_gtid")),
            type_lookup=type_lookup,
        )

    def apply(self, events: Sequence[TagEvent]) -> List[TagEvent]:
        out = list(events)
        if self.active_only:
            kept = [e for e in out if not e.is_deactivated]
            EVENTS_FILTERED.labels(stage="activeonly").inc(len(out) - len(kept))
            out = kept
        if self.tag_name_ids is not None:
            kept = [e for e in out if e.tag_name_id in self.tag_name_ids]
            EVENTS_FILTERED.labels(stage="tagnameid").inc(len(out) - len(kept))
            out = kept
        if self.entity_types is not None:
            globjids = {e.entity_id for e in out}
            if globjids and self.entity_types and self.type_lookup is not None:
                wanted = self.type_lookup.globjids_of_types(globjids, self.entity_types)
            else:
                wanted = set()
            kept = [e for e in out if e.entity_id in wanted]
            EVENTS_FILTERED.labels(stage="gtid").inc(len(out) - len(kept))
            out = kept
        return out

    __call__ = apply
