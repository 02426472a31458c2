"""Render a business record as the deal comment block the sales team reads."""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from .extractor import BusinessRecord
from .normalizer import PLACEHOLDER

_OPAQUE_ANYWHERE_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)

Line = Tuple[str, str]


def display_value(value: Optional[str], *, debug: bool = False) -> str:
    """Replace any opaque identifier with the placeholder (plus a short hint in debug)."""
    text = (value or "").strip()
    if not text:
        return ""

    def _substitute(match: "re.Match[str]") -> str:
        if debug:
            return f"{PLACEHOLDER} [ref {match.group(0)[:8].lower()}]"
        return PLACEHOLDER

    return _OPAQUE_ANYWHERE_RE.sub(_substitute, text)


def _item_lines(record: BusinessRecord) -> List[Line]:
    lines: List[Line] = []
    for item in record.items:
        lines.append(("Container type", item.type_label))
        if item.quantity is not None:
            lines.append(("Quantity", str(item.quantity)))
    lines.append(("Condition", record.condition))
    return lines


def _sections(record: BusinessRecord) -> List[Sequence[Line]]:
    utm = record.utm
    return [
        _item_lines(record),
        [("Comments", record.comments)],
        [
            ("Name", record.full_name),
            ("Company", record.company),
            ("Email", record.email),
            ("Phone number", record.phone),
        ],
        [
            ("Billing address", record.billing_street),
            ("City", record.billing_city),
            ("Province", record.billing_region),
            ("Postal code", record.billing_postal),
        ],
        [
            ("Delivery method", record.fulfillment_method),
            ("Pickup location", record.pickup_location),
            ("Container doors direction", record.orientation),
            ("Delivery address/Map Pin/Coordinates", record.delivery_address),
            ("Site contact name", record.site_contact_name),
            ("Site contact phone", record.site_contact_phone),
        ],
        [
            ("UTM Source", utm["source"]),
            ("UTM Medium", utm["medium"]),
            ("UTM Campaign", utm["campaign"]),
            ("UTM Term", utm["term"]),
            ("UTM Content", utm["content"]),
            ("Page URL", record.page_url),
            ("IP", record.ip),
            ("User-Agent", record.user_agent),
        ],
    ]


def compose(record: BusinessRecord, *, debug: bool = False) -> str:
    blocks: List[str] = []
    for section in _sections(record):
        rendered = []
        for label, value in section:
            text = display_value(value, debug=debug)
            if text:
                rendered.append(f"{label}\n{text}")
        if rendered:
            blocks.append("\n".join(rendered))
    # final pass: no identifier may leave this module
    return display_value("\n\n".join(blocks))
