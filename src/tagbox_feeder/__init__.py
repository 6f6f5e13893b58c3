"""Tagbox feeder: routes tagging activity to scoring tagboxes and drives their recompute runs.

Typical use from a scheduler:

    ctx = SiteContext()
    dispatcher = FeedDispatcher(ctx)
    dispatcher.feed_pending()
    dispatcher.run_most_important()
"""

from tagbox_feeder.context import SiteContext
from tagbox_feeder.dispatch import FeedDispatcher
from tagbox_feeder.events import AffectedAggregate, Contribution, TagEvent, UserChangeEvent
from tagbox_feeder.tagbox import Scorer, Tagbox, register_scorer

__all__ = [
	"SiteContext",
	"FeedDispatcher",
	"AffectedAggregate",
	"Contribution",
	"TagEvent",
	"UserChangeEvent",
	"Scorer",
	"Tagbox",
	"register_scorer",
]
