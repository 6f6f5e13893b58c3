from __future__ import annotations
import logging
import re
import threading
from typing import Dict, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)


class InterestIndex:
    """Which tagboxes care about what.

    * gtid -> tbids of tagboxes that list the gtid in nosy_gtids
    * one combined regex over every tagbox's user-key regexes

    Both are built lazily on first use and kept for the context lifetime.
    """

    def __init__(self, registry, catalog):
        self.registry = registry
        self.catalog = catalog
        self._nosy: Optional[Dict[int, Set[int]]] = None
        self._userkey_regex: Optional[re.Pattern] = None
        self._userkey_built = False
        self._lock = threading.Lock()

    def _build_nosy(self) -> Dict[int, Set[int]]:
        index: Dict[int, Set[int]] = {gtid: set() for gtid in self.catalog.list_entity_types()}
        for rec in self.registry.load(fields=["tbid", "nosy_gtids"]):
            for gtid in rec["nosy_gtids"]:
                index.setdefault(gtid, set()).add(rec["tbid"])
        return index

    def modules_interested_in(self, gtid: int) -> Set[int]:
        if self._nosy is None:
            with self._lock:
                if self._nosy is None:
                    self._nosy = self._build_nosy()
        return set(self._nosy.get(gtid, ()))

    def _build_userkey_regex(self) -> Optional[re.Pattern]:
        patterns = []
        for rec in self.registry.load(fields=["name", "userkeyregexes"]):
            for regex in rec["userkeyregexes"]:
                try:
                    re.compile(regex)
                except re.error as exc:
                    logger.error("tagbox %s has invalid userkeyregex %r: %s", rec["name"], regex, exc)
                    continue
                patterns.append(regex)
        if not patterns:
            return None
        return re.compile("(" + "|".join(f"(?:{p})" for p in patterns) + ")")

    def keys_requiring_log(self, keys: Iterable[str]) -> List[str]:
        """Subset of user keys (in input order) that some tagbox wants logged."""
        if not self._userkey_built:
            with self._lock:
                if not self._userkey_built:
                    self._userkey_regex = self._build_userkey_regex()
                    self._userkey_built = True
        if self._userkey_regex is None:
            return []
        return [k for k in keys if self._userkey_regex.search(k)]

    def clear(self):
        with self._lock:
            self._nosy = None
            self._userkey_regex = None
            self._userkey_built = False
