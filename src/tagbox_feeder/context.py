from __future__ import annotations
from typing import Callable, Dict, Optional
from tagbox_feeder.catalog import GlobjEssentials, GlobjTypeCatalog, GlobjTypeLookup
from tagbox_feeder.config import Settings, get_settings
from tagbox_feeder.feeder import FeederLog
from tagbox_feeder.history import TagHistoryFetcher
from tagbox_feeder.interest import InterestIndex
from tagbox_feeder.registry import ModuleRegistry
from tagbox_feeder.tagbox import SCORER_REGISTRY


class SiteContext:
    """Per-site handle owning every cache the feeder keeps.

    Registry records, the nosy index and the user-key regex live here rather
    than in module globals, so two sites in one process never share them.
    Caches are dropped by close().
    """

    def __init__(self, session_factory=None, settings: Optional[Settings] = None,
                 scorers: Optional[Dict[str, Callable]] = None, catalog=None, type_lookup=None, enricher=None):
        if session_factory is None:
            from tagbox_feeder.infrastructure import db
            session_factory = db.SessionLocal
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.scorers = dict(SCORER_REGISTRY if scorers is None else scorers)
        self.catalog = catalog or GlobjTypeCatalog(session_factory)
        self.type_lookup = type_lookup or GlobjTypeLookup(session_factory)
        self.enricher = enricher or GlobjEssentials(session_factory)
        self.feeder = FeederLog(session_factory, self.settings)
        self.registry = ModuleRegistry(self)
        self.interest = InterestIndex(self.registry, self.catalog)
        self.history = TagHistoryFetcher(self)

    def close(self):
        self.registry.clear()
        self.interest.clear()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
