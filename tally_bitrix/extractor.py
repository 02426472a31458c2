"""Pick canonical business fields out of a normalized flat record."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from .normalizer import normalize_key

# Most specific label first; every alias a form version has used goes here.
FIELD_CANDIDATES: Dict[str, Tuple[str, ...]] = {
    "full_name": ("name", "full_name", "your_name", "contact_name", "customer_name"),
    "first_name": ("first_name", "billing_first_name", "firstname", "given_name"),
    "last_name": ("last_name", "billing_last_name", "lastname", "surname", "family_name"),
    "email": ("email", "billing_email", "email_address", "your_email", "e_mail"),
    "phone": (
        "phone",
        "billing_phone",
        "phone_number",
        "your_phone",
        "mobile",
        "telephone",
    ),
    "company": ("company", "company_name", "business_name", "organization"),
    "comments": (
        "order_note",
        "message",
        "comments",
        "comment",
        "notes",
        "note",
        "additional_notes",
        "additional_information",
    ),
    "billing_street": (
        "billing_address_1",
        "billing_address",
        "street_address",
        "address",
        "address_line_1",
    ),
    "billing_city": ("billing_city", "city", "town"),
    "billing_region": (
        "billing_state",
        "province",
        "state",
        "province_state",
        "region",
    ),
    "billing_postal": (
        "billing_postcode",
        "postal_code",
        "postcode",
        "zip",
        "zip_code",
    ),
    "fulfillment_method": (
        "delivery_method",
        "fulfillment_method",
        "delivery_or_pickup",
        "method",
    ),
    "pickup_location": (
        "pickup_city",
        "pickup_location",
        "depot_location",
        "depot_city",
        "pickup_point",
        "depot",
        "location",
    ),
    "delivery_address": (
        "delivery_map_pin",
        "delivery_address_map_pin_coordinates",
        "delivery_address",
        "map_pin",
        "coordinates",
    ),
    "site_contact_name": ("site_contact_name",),
    "site_contact_phone": ("site_contact_phone",),
    "site_contact": ("site_contact",),
    "orientation": (
        "door_direction",
        "container_doors_direction_for_pickup",
        "container_doors_direction",
        "doors_direction",
    ),
    "condition": ("condition", "container_condition"),
    "utm_source": ("utm_source", "utmsource"),
    "utm_medium": ("utm_medium", "utmmedium"),
    "utm_campaign": ("utm_campaign", "utmcampaign"),
    "utm_term": ("utm_term", "utmterm"),
    "utm_content": ("utm_content", "utmcontent"),
    "page_url": ("page_url", "pageurl", "url", "wp_http_referer", "referer", "referrer"),
    "ip": ("ip", "ip_address", "remote_ip"),
    "user_agent": ("user_agent", "useragent"),
}

# Repeated per line item: slot 1 uses the bare key, slot n uses "<key>_<n>".
ITEM_TYPE_CANDIDATES = ("container_type", "container_size", "item_type", "container")
QUANTITY_CANDIDATES = ("quantity", "qty", "container_quantity", "how_many")

_SLOT_RE = re.compile(r"^(?P<base>.+?)_(?P<index>\d+)$")


@dataclass
class LineItem:
    type_label: str = ""
    quantity: Optional[int] = None


@dataclass
class BusinessRecord:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    company: str = ""
    comments: str = ""
    billing_street: str = ""
    billing_city: str = ""
    billing_region: str = ""
    billing_postal: str = ""
    items: List[LineItem] = field(default_factory=list)
    condition: str = ""
    fulfillment_method: str = ""
    pickup_location: str = ""
    delivery_address: str = ""
    site_contact_name: str = ""
    site_contact_phone: str = ""
    orientation: str = ""
    utm_source: str = ""
    utm_medium: str = ""
    utm_campaign: str = ""
    utm_term: str = ""
    utm_content: str = ""
    page_url: str = ""
    ip: str = ""
    user_agent: str = ""
    form_id: str = ""

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def has_identity(self) -> bool:
        return bool(self.email or self.phone)

    @property
    def utm(self) -> Dict[str, str]:
        return {
            "source": self.utm_source,
            "medium": self.utm_medium,
            "campaign": self.utm_campaign,
            "term": self.utm_term,
            "content": self.utm_content,
        }


def pick(flat: Mapping[str, str], *candidates: str) -> str:
    for candidate in candidates:
        value = flat.get(normalize_key(candidate))
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def to_int(value: Optional[str]) -> Optional[int]:
    digits = re.sub(r"\D", "", value or "")
    if not digits:
        return None
    number = float(digits)
    if not math.isfinite(number):
        return None
    return int(digits)


def clean_phone(value: Optional[str]) -> str:
    text = (value or "").strip()
    digits = re.sub(r"\D", "", text)
    if not digits:
        return ""
    return ("+" if text.startswith("+") else "") + digits


def split_name(full: Optional[str]) -> Tuple[str, str]:
    parts = (full or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def _slot_keys(candidates: Tuple[str, ...], index: int) -> Tuple[str, ...]:
    if index == 1:
        return candidates
    return tuple(f"{candidate}_{index}" for candidate in candidates)


def _slot_count(flat: Mapping[str, str]) -> int:
    bases = set(ITEM_TYPE_CANDIDATES) | set(QUANTITY_CANDIDATES)
    count = 1
    for key in flat:
        match = _SLOT_RE.match(key)
        if match and match.group("base") in bases:
            count = max(count, int(match.group("index")))
    return count


def extract_items(flat: Mapping[str, str]) -> List[LineItem]:
    items: List[LineItem] = []
    for index in range(1, _slot_count(flat) + 1):
        type_label = pick(flat, *_slot_keys(ITEM_TYPE_CANDIDATES, index))
        if type_label.lower() == "none":
            type_label = ""
        quantity = to_int(pick(flat, *_slot_keys(QUANTITY_CANDIDATES, index)))
        if type_label or quantity is not None:
            items.append(LineItem(type_label=type_label, quantity=quantity))
    return items


def extract_record(flat: Mapping[str, str], form_id: str = "") -> BusinessRecord:
    def value(name: str) -> str:
        return pick(flat, *FIELD_CANDIDATES[name])

    first_name, last_name = value("first_name"), value("last_name")
    split_first, split_last = split_name(value("full_name"))
    if not first_name:
        first_name, last_name = split_first, last_name or split_last

    site_contact = value("site_contact")
    site_parts = site_contact.split(" - ") if site_contact else []
    site_contact_name = value("site_contact_name") or (
        site_parts[0].strip() if site_parts else ""
    )
    site_contact_phone = clean_phone(
        value("site_contact_phone") or (site_parts[-1] if len(site_parts) > 1 else "")
    )

    return BusinessRecord(
        first_name=first_name,
        last_name=last_name,
        email=value("email"),
        phone=clean_phone(value("phone")),
        company=value("company"),
        comments=value("comments"),
        billing_street=value("billing_street"),
        billing_city=value("billing_city"),
        billing_region=value("billing_region"),
        billing_postal=value("billing_postal"),
        items=extract_items(flat),
        condition=value("condition"),
        fulfillment_method=value("fulfillment_method"),
        pickup_location=value("pickup_location"),
        delivery_address=value("delivery_address"),
        site_contact_name=site_contact_name,
        site_contact_phone=site_contact_phone,
        orientation=value("orientation"),
        utm_source=value("utm_source"),
        utm_medium=value("utm_medium"),
        utm_campaign=value("utm_campaign"),
        utm_term=value("utm_term"),
        utm_content=value("utm_content"),
        page_url=value("page_url"),
        ip=value("ip"),
        user_agent=value("user_agent"),
        form_id=form_id,
    )
