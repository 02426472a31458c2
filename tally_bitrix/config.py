"""Configuration for the Tally → Bitrix24 bridge."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


class ConfigurationError(RuntimeError):
    """Required server configuration is missing or malformed."""


DEFAULT_SOURCE_ID = "WEB"
DEFAULT_LEARNED_TTL_SECONDS = 6 * 3600
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_BACKOFF_SECONDS = 0.3


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default).strip()


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def _env_list(key: str, default: str) -> Tuple[str, ...]:
    raw = os.getenv(key)
    text = raw if raw is not None else default
    if not text:
        return ()
    return tuple(item.strip() for item in text.split(",") if item.strip())


# process-wide; read once at import, after app.py has loaded .env
LEARNED_OPTION_TTL_SECONDS = _env_int("LEARNED_OPTION_TTL_SECONDS", DEFAULT_LEARNED_TTL_SECONDS)


def parse_option_overrides(raw: str) -> Dict[str, Dict[str, str]]:
    """Decode the ``OPTION_OVERRIDES`` JSON map of group → identifier → label."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ConfigurationError(f"OPTION_OVERRIDES is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("OPTION_OVERRIDES must be a JSON object")

    overrides: Dict[str, Dict[str, str]] = {}
    for group, entries in data.items():
        if not isinstance(entries, dict):
            raise ConfigurationError(
                f"OPTION_OVERRIDES group {group!r} must map identifiers to labels"
            )
        overrides[str(group)] = {
            str(identifier).lower(): str(label)
            for identifier, label in entries.items()
            if label not in (None, "")
        }
    return overrides


@dataclass
class PipelineConfig:
    category_id: str = ""
    stage_id: str = ""
    owner_id: str = ""
    source_id: str = DEFAULT_SOURCE_ID


@dataclass
class BridgeSettings:
    webhook_base: str = ""
    allowed_origins: Tuple[str, ...] = ()
    deal_pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    quote_pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    option_overrides: Dict[str, Dict[str, str]] = field(default_factory=dict)
    debug_hints: bool = False
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS

    @classmethod
    def from_env(cls) -> "BridgeSettings":
        owner_id = _env("DEAL_ASSIGNED_BY_ID")
        source_id = _env("DEAL_SOURCE_ID", DEFAULT_SOURCE_ID) or DEFAULT_SOURCE_ID
        category_id = _env("DEAL_CATEGORY_ID", "0")
        stage_id = _env("DEAL_STAGE_ID")
        origins = _env_list("ALLOWED_ORIGINS", os.getenv("ALLOWED_ORIGIN", ""))
        return cls(
            webhook_base=_env("B24_WEBHOOK_BASE"),
            allowed_origins=origins,
            deal_pipeline=PipelineConfig(
                category_id=category_id,
                stage_id=stage_id,
                owner_id=owner_id,
                source_id=source_id,
            ),
            quote_pipeline=PipelineConfig(
                category_id=_env("QUOTE_DEAL_CATEGORY_ID", category_id),
                stage_id=_env("QUOTE_DEAL_STAGE_ID", stage_id),
                owner_id=owner_id,
                source_id=source_id,
            ),
            option_overrides=parse_option_overrides(_env("OPTION_OVERRIDES")),
            debug_hints=_env_bool("COMMENTS_DEBUG_HINTS", False),
            timeout_seconds=_env_float("CRM_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            max_attempts=max(_env_int("CRM_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS), 1),
            backoff_seconds=_env_float("CRM_BACKOFF_SECONDS", DEFAULT_BACKOFF_SECONDS),
        )

    @property
    def cors_permissive(self) -> bool:
        return not self.allowed_origins or "*" in self.allowed_origins

    def origin_allowed(self, origin: Optional[str]) -> bool:
        if self.cors_permissive or not origin:
            return True
        return origin in self.allowed_origins

    def require_crm(self) -> None:
        if not self.webhook_base:
            raise ConfigurationError("Missing B24_WEBHOOK_BASE")

    def pipeline_for(self, form: str) -> PipelineConfig:
        return self.quote_pipeline if form == "quote" else self.deal_pipeline

    def require_pipeline(self, form: str) -> PipelineConfig:
        pipeline = self.pipeline_for(form)
        if not pipeline.stage_id:
            raise ConfigurationError("Missing Bitrix deal stage (DEAL_STAGE_ID)")
        return pipeline

    def describe(self) -> Dict[str, Any]:
        """Non-secret summary used by the readiness endpoint."""
        return {
            "crmConfigured": bool(self.webhook_base),
            "dealStageConfigured": bool(self.deal_pipeline.stage_id),
            "overrideGroups": sorted(self.option_overrides),
        }
