"""Store-backed collaborators: entity-type catalog, type lookup, metadata enricher."""
from __future__ import annotations
from typing import Iterable, Sequence
from tagbox_feeder import queries
from tagbox_feeder.events import TagEvent


class GlobjTypeCatalog:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def list_entity_types(self) -> set[int]:
        with self.session_factory() as s:
            return {gtid for gtid, _ in s.execute(queries.select_globj_types())}


class GlobjTypeLookup:
    """Batched "which of these globjs have one of these gtids" lookup."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def globjids_of_types(self, globjids: Iterable[int], gtids: Iterable[int]) -> set[int]:
        globjids, gtids = set(globjids), set(gtids)
        if not globjids or not gtids:
            return set()
        with self.session_factory() as s:
            return set(s.scalars(queries.select_globjids_of_types(globjids, gtids)))


class GlobjEssentials:
    """Attach gtid, target_id and maintable of each event's globj to event.metadata."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def attach_metadata(self, events: Sequence[TagEvent]) -> Sequence[TagEvent]:
        globjids = {e.entity_id for e in events}
        if not globjids:
            return events
        with self.session_factory() as s:
            rows = {r.globjid: r for r in s.execute(queries.select_globj_essentials(globjids))}
        for e in events:
            row = rows.get(e.entity_id)
            if row is not None:
                e.metadata.update(gtid=row.gtid, target_id=row.target_id, maintable=row.maintable)
        return events
