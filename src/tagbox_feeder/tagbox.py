"""Runtime tagbox objects and the scorer interface they delegate to.

A Tagbox is built from one row of the tagboxes table plus a Scorer looked up
by the tagbox name. The Tagbox owns the generic pipeline (filtering,
observability hooks, history fetch); the Scorer supplies the scoring
behaviour and overrides only the stages it needs:

    @register_scorer("Despam")
    class DespamScorer(Scorer):
        def run(self, tagbox, affected_id, **options):
            tags = tagbox.fetch_tags(affected_id, extra_hops=1)
            ...

Feed methods return contributions; persisting them is the caller's job.
"""
from __future__ import annotations
import inspect
import logging
from typing import Callable, Dict, List, Sequence
from tagbox_feeder.config import get_settings, parse_enabled_tagboxes
from tagbox_feeder.errors import RunNotImplementedError, TagboxNotInstalledError
from tagbox_feeder.events import Contribution, TagEvent, UserChangeEvent
from tagbox_feeder.filters import EventFilter

logger = logging.getLogger(__name__)

# tagbox name -> scorer factory
SCORER_REGISTRY: Dict[str, Callable[[], "Scorer"]] = {}


def register_scorer(name: str):
    def decorator(cls):
        SCORER_REGISTRY[name] = cls
        return cls
    return decorator


def is_installed(name: str, settings=None) -> bool:
    enabled = parse_enabled_tagboxes((settings or get_settings()).enabled_tagboxes)
    return not enabled or name in enabled


def default_contributions(events: Sequence[TagEvent]) -> List[Contribution]:
    """One unit of importance per surviving event, keyed to its tdid if present else its tagid."""
    out = []
    for e in events:
        if e.deactivation_id:
            out.append(Contribution(affected_id=e.entity_id, importance=1, deactivation_id=e.deactivation_id))
        else:
            out.append(Contribution(affected_id=e.entity_id, importance=1, tag_id=e.tag_id))
    return out


class Scorer:
    """Scoring behaviour for one tagbox. Subclasses override what they need."""

    def process(self, tagbox: "Tagbox", events: List[TagEvent]) -> List[Contribution]:
        return default_contributions(events)

    def feed_user_changes(self, tagbox: "Tagbox", changes: List[UserChangeEvent]) -> List[Contribution]:
        return []

    def run(self, tagbox: "Tagbox", affected_id: int, **options):
        raise RunNotImplementedError(tagbox.name, f"run({affected_id}) not overridden")


class Tagbox:
    def __init__(self, context, record: dict, scorer: Scorer):
        self.context = context
        self.tbid: int = record["tbid"]
        self.name: str = record["name"]
        self.affected_type: str = record["affected_type"]
        self.weight: float = record["weight"]
        self.nosy_gtids = frozenset(record.get("nosy_gtids") or ())
        self.params: dict = dict(record.get("params") or {})
        self.debug: int = int(self.params.get("debug") or 0)
        self.scorer = scorer
        self.filter = EventFilter.from_params(self.params, context.type_lookup)

    @classmethod
    def build(cls, context, record: dict) -> "Tagbox":
        name = record["name"]
        if not is_installed(name, context.settings):
            raise TagboxNotInstalledError(name, "not enabled")
        factory = context.scorers.get(name)
        if factory is None:
            raise TagboxNotInstalledError(name, "no scorer registered")
        return cls(context, record, factory())

    def __repr__(self):
        return f"<Tagbox {self.tbid}:{self.name}>"

    # logging

    def info_log(self, fmt: str, *args):
        caller = inspect.currentframe().f_back.f_code.co_name
        logger.info("%s.%s " + fmt, self.name, caller, *args)

    def debug_log(self, fmt: str, *args):
        if self.debug > 0:
            caller = inspect.currentframe().f_back.f_code.co_name
            logger.info("%s.%s " + fmt, self.name, caller, *args)

    # new tags

    def feed_new_tags(self, events: Sequence[TagEvent]) -> List[Contribution]:
        events = self.feed_new_tags_filter(events)
        self.feed_new_tags_pre(events)
        contributions = self.process(events)
        self.feed_new_tags_post(contributions)
        return contributions

    def feed_new_tags_filter(self, events: Sequence[TagEvent]) -> List[TagEvent]:
        return self.filter.apply(events)

    def feed_new_tags_pre(self, events: Sequence[TagEvent]):
        if len(events) < 9:
            self.debug_log("filtered tags '%s'", " ".join(str(e.tag_id) for e in events))
        else:
            self.debug_log("%d filtered tags '%s ... %s'", len(events), events[0].tag_id, events[-1].tag_id)

    def feed_new_tags_post(self, contributions: Sequence[Contribution]):
        self.debug_log("returning %d", len(contributions))

    def process(self, events: List[TagEvent]) -> List[Contribution]:
        return self.scorer.process(self, events)

    # deactivated tags

    def feed_deactivated_tags(self, events: Sequence[TagEvent]) -> List[Contribution]:
        # feed_new_tags tells the two apart by deactivation_id
        self.info_log("tags '%s'", " ".join(str(e.tag_id) for e in events))
        return self.feed_new_tags(events)

    # user changes

    def feed_user_changes(self, changes: Sequence[UserChangeEvent]) -> List[Contribution]:
        self.info_log("user changes '%s'", " ".join(str(c.user_change_id) for c in changes))
        return self.scorer.feed_user_changes(self, list(changes))

    # recomputation

    def run(self, affected_id: int, **options):
        return self.scorer.run(self, affected_id, **options)

    def fetch_tags(self, affected_id: int, extra_hops: int = 0, **options) -> List[TagEvent]:
        return self.context.history.fetch(self.tbid, affected_id, extra_hops, **options)
