"""Find-or-create the CRM contact a submission should be linked to."""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .crm_client import CRMClient, CRMError

logger = logging.getLogger(__name__)


def contact_display_name(name: str, phone: str) -> str:
    if name:
        return name
    return "Caller" if phone else "Visitor"


def reconcile_contact(
    client: CRMClient,
    email: str,
    phone: str,
    display_name: str = "",
    *,
    last_name: str = "",
    company: str = "",
) -> Optional[str]:
    """Return the ID of the matching (or newly created) contact, or ``None``.

    Lookup is email first, then phone. The search and the create are separate
    calls, so two simultaneous submissions from the same person can each
    create a contact. Failures never propagate: the deal is simply created
    without a contact link.
    """
    email = (email or "").strip()
    phone = (phone or "").strip()
    if not email and not phone:
        return None

    try:
        contact_id = None
        if email:
            contact_id = client.find_contact_by_email(email)
        if not contact_id and phone:
            contact_id = client.find_contact_by_phone(phone)
        if contact_id:
            logger.debug("Matched existing contact %s", contact_id)
            return contact_id

        contact_id = client.add_contact(
            contact_display_name(display_name, phone),
            email=email,
            phone=phone,
            last_name=last_name,
            company=company,
        )
        if contact_id:
            logger.info("Created contact %s", contact_id)
        return contact_id
    except (CRMError, requests.RequestException) as exc:
        logger.warning("Contact reconciliation failed, continuing without contact: %s", exc)
        return None
