"""Minimal Bitrix24 client used by the form bridge."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TIMEOUT_SECONDS,
    BridgeSettings,
)

logger = logging.getLogger(__name__)


class CRMError(RuntimeError):
    def __init__(self, method: str, message: str) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method


class CRMTransientError(CRMError):
    """Rate limit, server error or network failure that outlived the retries."""

    def __init__(self, method: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(method, message)
        self.status = status


class CRMApplicationError(CRMError):
    """Structured ``error``/``error_description`` answer from Bitrix24."""

    def __init__(self, method: str, code: str, description: str = "") -> None:
        super().__init__(method, f"{code}: {description}" if description else code)
        self.code = code
        self.description = description


def _multifield(value: str) -> Optional[List[Dict[str, str]]]:
    if not value:
        return None
    return [{"VALUE": value, "VALUE_TYPE": "WORK"}]


def _first_id(result: Any) -> Optional[str]:
    if isinstance(result, list) and result:
        first = result[0]
        if isinstance(first, dict) and first.get("ID"):
            return str(first["ID"])
    return None


class CRMClient:
    def __init__(
        self,
        webhook_base: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.webhook_base = webhook_base.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_attempts = max(max_attempts, 1)
        self.backoff = backoff
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> "CRMClient":
        settings.require_crm()
        return cls(
            settings.webhook_base,
            timeout=settings.timeout_seconds,
            max_attempts=settings.max_attempts,
            backoff=settings.backoff_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        return self.backoff * (2 ** (attempt - 1))

    def _retry_or_raise(self, method: str, attempt: int, error: CRMTransientError) -> None:
        if attempt >= self.max_attempts:
            raise error
        delay = self.delay_for(attempt)
        logger.warning(
            "Bitrix %s attempt %d/%d failed (%s); retrying in %.1fs",
            method,
            attempt,
            self.max_attempts,
            error,
            delay,
        )
        self._sleep(delay)

    def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.webhook_base}/{method}.json"
        body = _drop_empty(params or {})
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self.session.post(url, json=body, timeout=self.timeout)
            except requests.RequestException as exc:
                self._retry_or_raise(
                    method, attempt, CRMTransientError(method, f"network error: {exc}")
                )
                continue
            if resp.status_code == 429 or resp.status_code >= 500:
                self._retry_or_raise(
                    method,
                    attempt,
                    CRMTransientError(
                        method, f"HTTP {resp.status_code}", status=resp.status_code
                    ),
                )
                continue
            break

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if data.get("error"):
            raise CRMApplicationError(
                method, str(data["error"]), str(data.get("error_description") or "")
            )
        if resp.status_code >= 400:
            raise CRMApplicationError(
                method, f"HTTP_{resp.status_code}", json.dumps(data) if data else resp.text[:200]
            )
        return data.get("result")

    def find_contact_by_email(self, email: str) -> Optional[str]:
        result = self.call(
            "crm.contact.list", {"filter": {"EMAIL": email}, "select": ["ID"]}
        )
        return _first_id(result)

    def find_contact_by_phone(self, phone: str) -> Optional[str]:
        result = self.call(
            "crm.contact.list", {"filter": {"PHONE": phone}, "select": ["ID"]}
        )
        return _first_id(result)

    def add_contact(
        self,
        name: str,
        *,
        email: str = "",
        phone: str = "",
        last_name: str = "",
        company: str = "",
    ) -> Optional[str]:
        fields = {
            "NAME": name,
            "LAST_NAME": last_name,
            "OPENED": "Y",
            "EMAIL": _multifield(email),
            "PHONE": _multifield(phone),
            "COMPANY_TITLE": company,
        }
        result = self.call("crm.contact.add", {"fields": fields})
        return str(result) if result else None

    def add_deal(self, fields: Dict[str, Any]) -> Optional[str]:
        result = self.call(
            "crm.deal.add", {"fields": fields, "params": {"REGISTER_SONET_EVENT": "Y"}}
        )
        return str(result) if result else None

    def add_lead(self, fields: Dict[str, Any]) -> Optional[str]:
        result = self.call(
            "crm.lead.add", {"fields": fields, "params": {"REGISTER_SONET_EVENT": "Y"}}
        )
        return str(result) if result else None


def _drop_empty(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _drop_empty(v) for k, v in obj.items() if v not in (None, "", [], {})}
    if isinstance(obj, list):
        return [_drop_empty(item) for item in obj if item not in (None, "", [], {})]
    return obj
