"""Tagbox metadata registry.

Everything except the watermark columns is loaded once per SiteContext and
kept for its lifetime. Watermarks (last_run_completed, last_*_logged) are
never cached: they are read from the tagboxes table on every load() that
needs them, and left out of the result entirely when the caller projects
to fields that do not include them.
"""
from __future__ import annotations
import copy
import logging
import threading
from typing import Iterable, List, Optional, Union
from prometheus_client import Counter
from tagbox_feeder import queries
from tagbox_feeder.errors import TagboxConfigurationError
from tagbox_feeder.tagbox import Tagbox

logger = logging.getLogger(__name__)

TAGBOXES_EXCLUDED = Counter('tagbox_excluded_total', 'Tagboxes excluded from dispatch', ['tagbox', 'reason'])

WATERMARK_FIELDS = frozenset(queries.WATERMARK_COLUMNS)


def _parse_gtids(raw: str | None) -> set[int]:
    return {int(g) for g in (raw or "").split() if g.isdigit()}


def _clone(record: dict) -> dict:
    # the live Tagbox object is shared, everything else is copied
    obj = record.get("object")
    out = copy.deepcopy({k: v for k, v in record.items() if k != "object"})
    if "object" in record:
        out["object"] = obj
    return out


class ModuleRegistry:
    def __init__(self, context):
        self.context = context
        self._records: Optional[List[dict]] = None
        self._lock = threading.Lock()
        # tbids dropped at runtime; kept across rebuilds for the context lifetime
        self._excluded: set[int] = set()

    def _build(self) -> List[dict]:
        with self.context.session_factory() as s:
            rows = s.scalars(queries.select_tagboxes()).all()
            regexes = s.execute(queries.select_userkeyregexes()).all()
        records = []
        for row in rows:
            if row.tbid in self._excluded:
                continue
            records.append({
                "tbid": row.tbid,
                "name": row.name,
                "affected_type": row.affected_type,
                "nosy_gtids": _parse_gtids(row.nosy_gtids),
                "weight": row.weight,
                "params": dict(row.params or {}),
                "userkeyregexes": [r.userkeyregex for r in regexes if r.name == row.name],
            })
        built = []
        for rec in records:
            try:
                rec["object"] = Tagbox.build(self.context, _clone(rec))
            except TagboxConfigurationError as exc:
                logger.info("tagbox %s not loaded: %s", rec["name"], exc)
                TAGBOXES_EXCLUDED.labels(tagbox=rec["name"], reason="not_installed").inc()
                continue
            except Exception:
                logger.exception("tagbox %s failed to construct", rec["name"])
                TAGBOXES_EXCLUDED.labels(tagbox=rec["name"], reason="construct_failed").inc()
                continue
            built.append(rec)
        return built

    def _loaded(self) -> List[dict]:
        if self._records is None:
            with self._lock:
                if self._records is None:
                    self._records = self._build()
        return self._records

    def _fresh_watermarks(self) -> dict[int, dict]:
        with self.context.session_factory() as s:
            return {row.tbid: dict(row._mapping) for row in s.execute(queries.select_watermarks())}

    def load(self, id_or_name: Union[int, str, None] = None, fields: Union[str, Iterable[str], None] = None):
        """Return all tagbox records, or one, optionally projected to `fields`.

        A record is a dict with tbid, name, affected_type, nosy_gtids, weight,
        params, userkeyregexes, object and the four watermark fields. A falsy
        id_or_name (None, 0, "") means all tagboxes. Returns None when a
        specific tagbox was asked for and does not exist.
        """
        if isinstance(fields, str):
            fields = [fields]
        wanted = set(fields) if fields else set()

        records = list(self._loaded())
        if id_or_name:
            if isinstance(id_or_name, int) or str(id_or_name).isdigit():
                records = [r for r in records if r["tbid"] == int(id_or_name)]
            else:
                records = [r for r in records if r["name"] == id_or_name]
            if not records:
                return None
            records = records[:1]

        out = [_clone(r) for r in records]
        if not wanted or wanted & WATERMARK_FIELDS:
            marks = self._fresh_watermarks()
            for rec in out:
                rec.update(marks.get(rec["tbid"], {}))
        if wanted:
            for rec in out:
                for stale in [k for k in rec if k not in wanted]:
                    del rec[stale]

        if id_or_name:
            return out[0]
        return out

    def tagboxes(self) -> List[Tagbox]:
        """Live Tagbox objects, in tbid order."""
        return [r["object"] for r in self._loaded()]

    def get(self, tbid: int) -> Optional[Tagbox]:
        for r in self._loaded():
            if r["tbid"] == tbid:
                return r["object"]
        return None

    def exclude(self, tbid: int, reason: str):
        """Drop a tagbox from every later result (e.g. its run() is not implemented)."""
        with self._lock:
            self._excluded.add(tbid)
            name = next((r["name"] for r in self._records or () if r["tbid"] == tbid), str(tbid))
            logger.warning("excluding tagbox %s: %s", name, reason)
            TAGBOXES_EXCLUDED.labels(tagbox=name, reason="runtime").inc()
            if self._records is not None:
                self._records = [r for r in self._records if r["tbid"] != tbid]

    def clear(self):
        with self._lock:
            self._records = None
