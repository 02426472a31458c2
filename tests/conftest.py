"""Pytest fixtures for the form bridge tests."""

from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from tally_bitrix.config import BridgeSettings, PipelineConfig
from tally_bitrix.crm_client import CRMClient
from tally_bitrix.options import LEARNED_CHOICES, LearnedChoiceCache, OptionDictionary

WEBHOOK_BASE = "https://b24.example.test/rest/1/abc123"
STATIC_CONTAINER_ID = "e7ae7ebd-0f39-4584-96a9-5f5154bdbbfb"
UNKNOWN_ID = "0b5c3f1a-1111-4222-8333-944455556666"

_ENV_KEYS = (
    "B24_WEBHOOK_BASE",
    "ALLOWED_ORIGINS",
    "ALLOWED_ORIGIN",
    "DEAL_CATEGORY_ID",
    "DEAL_STAGE_ID",
    "QUOTE_DEAL_CATEGORY_ID",
    "QUOTE_DEAL_STAGE_ID",
    "DEAL_ASSIGNED_BY_ID",
    "DEAL_SOURCE_ID",
    "OPTION_OVERRIDES",
    "LEARNED_OPTION_TTL_SECONDS",
    "COMMENTS_DEBUG_HINTS",
    "CRM_TIMEOUT_SECONDS",
    "CRM_MAX_ATTEMPTS",
    "CRM_BACKOFF_SECONDS",
)


class FakeCRM(CRMClient):
    """In-memory Bitrix24 that answers the handful of methods the bridge uses."""

    def __init__(self) -> None:
        super().__init__(WEBHOOK_BASE, session=MagicMock(), sleep=lambda _delay: None)
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.deals: Dict[str, Dict[str, Any]] = {}
        self.leads: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self._next_id = 100

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    def _matches(self, contact: Dict[str, Any], kind: str, value: str) -> bool:
        for entry in contact.get(kind) or []:
            if str(entry["VALUE"]).lower() == value.lower():
                return True
        return False

    def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]
        params = params or {}
        if method == "crm.contact.list":
            kind, value = next(iter(params["filter"].items()))
            return [
                {"ID": contact_id}
                for contact_id, contact in self.contacts.items()
                if self._matches(contact, kind, value)
            ]
        fields = {key: value for key, value in params.get("fields", {}).items() if value}
        store = {
            "crm.contact.add": self.contacts,
            "crm.deal.add": self.deals,
            "crm.lead.add": self.leads,
        }[method]
        record_id = self._new_id()
        store[record_id] = fields
        return int(record_id)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's shell and .env out of the tests."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    LEARNED_CHOICES.clear()


@pytest.fixture
def fake_crm() -> FakeCRM:
    return FakeCRM()


@pytest.fixture
def dictionary() -> OptionDictionary:
    return OptionDictionary(cache=LearnedChoiceCache())


@pytest.fixture
def settings() -> BridgeSettings:
    return BridgeSettings(
        webhook_base=WEBHOOK_BASE,
        deal_pipeline=PipelineConfig(category_id="2", stage_id="C2:NEW", owner_id="7"),
        quote_pipeline=PipelineConfig(category_id="4", stage_id="C4:NEW", owner_id="7"),
    )


@pytest.fixture
def tally_payload() -> Dict[str, Any]:
    """A Tally FORM_RESPONSE webhook with one dropdown and contact details."""
    return {
        "eventId": "evt_1",
        "eventType": "FORM_RESPONSE",
        "data": {
            "formId": "w7Xk2b",
            "formName": "Container request",
            "fields": [
                {
                    "key": "question_container",
                    "label": "Container type",
                    "type": "DROPDOWN",
                    "value": [STATIC_CONTAINER_ID],
                    "options": [
                        {"id": STATIC_CONTAINER_ID, "text": "40' HC Double Doors"},
                        {"id": UNKNOWN_ID, "text": "20' Standard"},
                    ],
                },
                {"key": "question_qty", "label": "Quantity", "type": "INPUT_NUMBER", "value": 2},
                {"key": "question_name", "label": "Name", "type": "INPUT_TEXT", "value": "Jane Doe"},
                {
                    "key": "question_email",
                    "label": "Email",
                    "type": "INPUT_EMAIL",
                    "value": "jane@example.com",
                },
                {
                    "key": "question_phone",
                    "label": "Phone number",
                    "type": "INPUT_PHONE_NUMBER",
                    "value": "+1 (416) 555-0100",
                },
                {"key": "question_city", "label": "City", "type": "INPUT_TEXT", "value": "Toronto"},
            ],
        },
    }
