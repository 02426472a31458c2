"""Option dictionary: turns opaque form option identifiers into labels."""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional

from .config import DEFAULT_LEARNED_TTL_SECONDS, LEARNED_OPTION_TTL_SECONDS

logger = logging.getLogger(__name__)

OPAQUE_ID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

ITEM_TYPE = "item_type"
REGION = "region"
FULFILLMENT_METHOD = "fulfillment_method"
ORIENTATION = "orientation"
CONDITION = "condition"

GROUPS = (ITEM_TYPE, REGION, FULFILLMENT_METHOD, ORIENTATION, CONDITION)

# Order matters: "Container doors direction" must land in orientation, not item type.
GROUP_KEYWORDS = (
    (ORIENTATION, re.compile(r"door|direction")),
    (REGION, re.compile(r"\b(province|state|region)\b")),
    (FULFILLMENT_METHOD, re.compile(r"method")),
    (CONDITION, re.compile(r"condition")),
    (ITEM_TYPE, re.compile(r"container\s*(type|size)|item\s*type|\bsize\b")),
)

STATIC_OPTIONS: Dict[str, Dict[str, str]] = {
    ITEM_TYPE: {
        "e7ae7ebd-0f39-4584-96a9-5f5154bdbbfb": "40' HC Double Doors",
    },
    REGION: {},
    FULFILLMENT_METHOD: {},
    ORIENTATION: {},
    CONDITION: {},
}


def is_opaque_id(value: Any) -> bool:
    return isinstance(value, str) and bool(OPAQUE_ID_RE.match(value.strip()))


def infer_group(label: Optional[str]) -> Optional[str]:
    text = (label or "").strip().lower()
    if not text:
        return None
    for group, pattern in GROUP_KEYWORDS:
        if pattern.search(text):
            return group
    return None


def option_label(option: Any) -> str:
    if not isinstance(option, dict):
        return ""
    for key in ("text", "label", "name", "value"):
        value = option.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


@dataclass
class _LearnedEntry:
    expires_at: float
    groups: Dict[str, Dict[str, str]] = field(default_factory=dict)


class LearnedChoiceCache:
    """Process-wide store of payload-learned options, keyed by form identifier.

    Each form's entry is created on first use and carries its own expiry; every
    read checks the expiry and drops stale entries so the next harvest rebuilds
    them. The lock only protects the dict itself; concurrent first-seen
    requests may still miss each other's entries for a moment.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_LEARNED_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, _LearnedEntry] = {}

    def _live_entry(self, form_id: str) -> Optional[_LearnedEntry]:
        entry = self._entries.get(form_id)
        if entry and entry.expires_at <= self._clock():
            self._entries.pop(form_id, None)
            logger.debug("Learned options for form %r expired", form_id)
            return None
        return entry

    def get(self, form_id: str, group: str, identifier: str) -> Optional[str]:
        with self._lock:
            entry = self._live_entry(form_id)
            if not entry:
                return None
            return entry.groups.get(group, {}).get(identifier)

    def groups(self, form_id: str) -> Dict[str, Dict[str, str]]:
        with self._lock:
            entry = self._live_entry(form_id)
            if not entry:
                return {}
            return {group: dict(items) for group, items in entry.groups.items()}

    def put(self, form_id: str, group: str, identifier: str, label: str) -> bool:
        with self._lock:
            entry = self._live_entry(form_id)
            if entry is None:
                entry = _LearnedEntry(expires_at=self._clock() + self.ttl_seconds)
                self._entries[form_id] = entry
            bucket = entry.groups.setdefault(group, {})
            if bucket.get(identifier) == label:
                return False
            if identifier in bucket:
                logger.debug(
                    "Option %s on form %r renamed: %r -> %r",
                    identifier,
                    form_id,
                    bucket[identifier],
                    label,
                )
            bucket[identifier] = label
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


LEARNED_CHOICES = LearnedChoiceCache(LEARNED_OPTION_TTL_SECONDS)


class OptionDictionary:
    """Three-layer lookup: override configuration > static table > learned."""

    def __init__(
        self,
        static: Optional[Dict[str, Dict[str, str]]] = None,
        overrides: Optional[Dict[str, Dict[str, str]]] = None,
        cache: Optional[LearnedChoiceCache] = None,
    ) -> None:
        self.static = _lowercase_ids(STATIC_OPTIONS if static is None else static)
        self.overrides = _lowercase_ids(overrides or {})
        self.cache = cache if cache is not None else LEARNED_CHOICES

    def _candidate_groups(
        self, group: Optional[str], form_id: str, include_learned: bool
    ) -> Iterable[str]:
        if group:
            return (group,)
        names = list(self.overrides) + list(self.static)
        if include_learned:
            names += list(self.cache.groups(form_id))
        return list(dict.fromkeys(names))

    def _authoritative(self, group: str, identifier: str) -> Optional[str]:
        label = self.overrides.get(group, {}).get(identifier)
        if label:
            return label
        return self.static.get(group, {}).get(identifier)

    def resolve(
        self,
        group: Optional[str],
        raw: Any,
        form_id: str = "",
        *,
        include_learned: bool = True,
    ) -> Any:
        if not is_opaque_id(raw):
            return raw
        identifier = raw.strip().lower()
        groups = list(self._candidate_groups(group, form_id, include_learned))
        for name in groups:
            label = self._authoritative(name, identifier)
            if label:
                return label
        if not include_learned:
            return raw
        for name in groups:
            label = self.cache.get(form_id, name, identifier)
            if label:
                return label
        return raw

    def learn(self, group: str, identifier: Any, label: Any, form_id: str = "") -> bool:
        if not group or not is_opaque_id(identifier):
            return False
        text = str(label or "").strip()
        if not text or is_opaque_id(text):
            return False
        key = identifier.strip().lower()
        if self._authoritative(group, key):
            return False
        return self.cache.put(form_id, group, key, text)

    def harvest(self, label: Optional[str], options: Any, form_id: str = "") -> int:
        """Learn the choices embedded in a field descriptor; returns how many changed."""
        if not isinstance(options, list):
            return 0
        group = infer_group(label)
        if not group:
            return 0
        learned = 0
        for option in options:
            if not isinstance(option, dict):
                continue
            identifier = option.get("id")
            if self.learn(group, identifier, option_label(option), form_id):
                learned += 1
        if learned:
            logger.debug(
                "Learned %d option(s) for group %s on form %r", learned, group, form_id
            )
        return learned


def _lowercase_ids(table: Dict[str, Dict[str, str]]) -> Dict[str, Dict[str, str]]:
    return {
        group: {str(identifier).lower(): label for identifier, label in entries.items()}
        for group, entries in table.items()
    }
