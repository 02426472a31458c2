"""Flatten vendor webhook payloads into a normalized key → text mapping.

Form services send the same logical field in different shapes: Tally puts
field descriptors (with embedded option lists) under ``data.fields``, some
integrations send ``answers`` with human text, hidden fields travel in a
``hidden`` map and plain website forms post bare top-level properties. Each
shape is handled by one strategy function; the strategies run in a fixed
order over a single :class:`FlatRecord` accumulator.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .options import OptionDictionary, infer_group, is_opaque_id, option_label

logger = logging.getLogger(__name__)

PLACEHOLDER = "Selection not captured"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_NESTED_VALUE_KEYS = ("label", "name", "text", "value", "email", "phone")
_ANSWER_LABEL_KEYS = ("label", "question", "title", "key", "field")
_ANSWER_VALUE_KEYS = ("value", "answer", "text")
_HIDDEN_KEYS = ("hidden", "hiddenFields", "meta")
_SECTION_KEYS = {"fields", "answers", "data", *_HIDDEN_KEYS}


def normalize_key(label: Any) -> str:
    if label is None:
        return ""
    return _NON_ALNUM_RE.sub("_", str(label).lower()).strip("_")


def is_more_human(stored: str, candidate: str) -> bool:
    """True when ``candidate`` should replace ``stored`` instead of being suffixed."""
    if not candidate:
        return False
    if is_opaque_id(stored) and not is_opaque_id(candidate):
        return True
    return stored == PLACEHOLDER and candidate != PLACEHOLDER


class FlatRecord(Dict[str, str]):
    """Normalized key → string value map with duplicate-aware writes."""

    def put(self, label: Any, value: Any) -> Optional[str]:
        """Store ``value`` under the normalized ``label``; returns the key used."""
        key = normalize_key(label)
        text = _as_text(value)
        if not key or not text:
            return None

        stored = self.get(key)
        if stored is None:
            self[key] = text
            return key
        if is_more_human(stored, text):
            self[key] = text
            return key

        # repeats (two line items of the same type) keep their own slot
        index = 2
        while True:
            slot = f"{key}_{index}"
            existing = self.get(slot)
            if existing is None:
                self[slot] = text
                return slot
            if is_more_human(existing, text):
                self[slot] = text
                return slot
            index += 1

    def put_if_absent(self, label: Any, value: Any) -> Optional[str]:
        key = normalize_key(label)
        text = _as_text(value)
        if not key or not text or key in self:
            return None
        self[key] = text
        return key


@dataclass
class NormalizeContext:
    dictionary: OptionDictionary
    form_id: str = ""


Strategy = Callable[[Dict[str, Any], NormalizeContext, FlatRecord], None]


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value).strip()


def _sections(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """The root object plus the ``data`` envelope, when there is one."""
    found = [payload]
    data = payload.get("data")
    if isinstance(data, dict):
        found.append(data)
    return found


def _section_list(payload: Dict[str, Any], key: str) -> List[Any]:
    items: List[Any] = []
    for section in _sections(payload):
        value = section.get(key)
        if isinstance(value, list):
            items.extend(value)
    return items


def form_identifier(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    for section in reversed(_sections(payload)):
        for key in ("formId", "form_id", "formID"):
            value = section.get(key)
            if value not in (None, ""):
                return str(value)
    return ""


def _nested_value(value: Dict[str, Any]) -> Any:
    for key in _NESTED_VALUE_KEYS:
        candidate = value.get(key)
        if candidate not in (None, ""):
            return candidate
    return None


def _options_by_id(options: Any) -> Dict[str, str]:
    if not isinstance(options, list):
        return {}
    table: Dict[str, str] = {}
    for option in options:
        if isinstance(option, dict) and option.get("id") is not None:
            label = option_label(option)
            if label:
                table[str(option["id"]).strip().lower()] = label
    return table


def resolve_value(
    value: Any,
    context: NormalizeContext,
    group: Optional[str],
    local_options: Optional[Dict[str, str]] = None,
) -> str:
    """Resolve one raw descriptor value to display text ("" when nothing usable)."""
    local_options = local_options or {}

    if isinstance(value, list):
        parts = [
            resolve_value(element, context, group, local_options) for element in value
        ]
        return ", ".join(part for part in parts if part)
    if isinstance(value, dict):
        return resolve_value(_nested_value(value), context, group, local_options)

    text = _as_text(value)
    if not text:
        return ""
    # override and static first, then the payload's own options, then learned
    resolved = context.dictionary.resolve(
        group, text, context.form_id, include_learned=False
    )
    if is_opaque_id(resolved):
        resolved = local_options.get(resolved.strip().lower()) or context.dictionary.resolve(
            group, text, context.form_id
        )
    elif resolved == text and local_options:
        # dropdowns with non-uuid ids (numbers, short tokens)
        resolved = local_options.get(text.lower(), text)
    return resolved


def apply_field_descriptors(
    payload: Dict[str, Any], context: NormalizeContext, record: FlatRecord
) -> None:
    for descriptor in _section_list(payload, "fields"):
        if not isinstance(descriptor, dict):
            continue
        label = descriptor.get("label") or descriptor.get("title")
        alias = descriptor.get("key") or descriptor.get("id")
        options = descriptor.get("options")
        context.dictionary.harvest(label or alias, options, context.form_id)

        group = infer_group(label or alias)
        text = resolve_value(
            descriptor.get("value"), context, group, _options_by_id(options)
        )
        if not text:
            continue
        if label:
            record.put(label, text)
        if alias and normalize_key(alias) != normalize_key(label):
            record.put(alias, text)


def apply_answer_descriptors(
    payload: Dict[str, Any], context: NormalizeContext, record: FlatRecord
) -> None:
    for answer in _section_list(payload, "answers"):
        if not isinstance(answer, dict):
            continue
        label = next(
            (answer[key] for key in _ANSWER_LABEL_KEYS if answer.get(key)), None
        )
        if isinstance(label, dict):
            label = _nested_value(label)
        if not label:
            continue
        raw = next(
            (answer[key] for key in _ANSWER_VALUE_KEYS if key in answer), None
        )
        text = resolve_value(raw, context, infer_group(str(label)))
        if text:
            record.put(label, text)


def apply_hidden_fields(
    payload: Dict[str, Any], context: NormalizeContext, record: FlatRecord
) -> None:
    for section in _sections(payload):
        for key in _HIDDEN_KEYS:
            hidden = section.get(key)
            if not isinstance(hidden, dict):
                continue
            for name, value in hidden.items():
                record.put(name, value)


def apply_top_level_scalars(
    payload: Dict[str, Any], context: NormalizeContext, record: FlatRecord
) -> None:
    for section in _sections(payload):
        for name, value in section.items():
            if name in _SECTION_KEYS:
                continue
            if isinstance(value, list):
                # repeated form keys (``qty[]``) become qty, qty_2, ... by position
                key = normalize_key(name)
                if not key or key in record:
                    continue
                for index, element in enumerate(value):
                    text = _as_text(element)
                    if not text:
                        continue
                    slot = key if index == 0 else f"{key}_{index + 1}"
                    record.put_if_absent(slot, text)
            else:
                record.put_if_absent(name, value)


STRATEGIES: Tuple[Strategy, ...] = (
    apply_field_descriptors,
    apply_answer_descriptors,
    apply_hidden_fields,
    apply_top_level_scalars,
)


def normalize(
    payload: Any,
    dictionary: Optional[OptionDictionary] = None,
    *,
    form_id: Optional[str] = None,
) -> FlatRecord:
    record = FlatRecord()
    if not isinstance(payload, dict):
        logger.debug("Ignoring non-object payload of type %s", type(payload).__name__)
        return record

    context = NormalizeContext(
        dictionary=dictionary or OptionDictionary(),
        form_id=form_identifier(payload) if form_id is None else form_id,
    )
    for strategy in STRATEGIES:
        strategy(payload, context, record)
    logger.debug("Normalized payload into %d key(s)", len(record))
    return record
