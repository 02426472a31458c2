"""Turn a form webhook into a Bitrix24 deal or lead."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from .comments import compose, display_value
from .config import BridgeSettings, PipelineConfig
from .contacts import reconcile_contact
from .crm_client import CRMApplicationError, CRMClient, CRMTransientError
from .extractor import BusinessRecord, extract_record
from .normalizer import FlatRecord, form_identifier, normalize
from .options import LEARNED_CHOICES, OptionDictionary

logger = logging.getLogger(__name__)

TITLE_LIMIT = 250


class MissingIdentityError(ValueError):
    """The form requires an email or phone number and neither was sent."""


@dataclass
class SubmissionResult:
    ok: bool
    entity: str
    record_id: Optional[str] = None
    contact_id: Optional[str] = None
    error_kind: Optional[str] = None
    error_code: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class PreparedSubmission:
    flat: FlatRecord
    record: BusinessRecord
    comments: str


def _quote_title(record: BusinessRecord) -> str:
    first_item = record.items[0].type_label if record.items else ""
    bits = [
        record.full_name or record.phone or "Quote request",
        display_value(first_item),
        record.billing_city or record.billing_region,
    ]
    return "Quote Request: " + " | ".join(bit for bit in bits if bit)


@dataclass
class FormProfile:
    name: str
    entity: str
    title: Callable[[BusinessRecord], str]
    require_identity: bool = False
    link_contact: bool = True


FORM_PROFILES: Dict[str, FormProfile] = {
    "lead": FormProfile(
        name="lead",
        entity="lead",
        title=lambda record: "Website lead",
        require_identity=True,
        link_contact=False,
    ),
    "quote": FormProfile(name="quote", entity="deal", title=_quote_title),
    "request": FormProfile(
        name="request", entity="deal", title=lambda record: "Invoice Request"
    ),
}


def build_dictionary(settings: BridgeSettings) -> OptionDictionary:
    return OptionDictionary(overrides=settings.option_overrides, cache=LEARNED_CHOICES)


def prepare_submission(
    payload: Any,
    *,
    dictionary: OptionDictionary,
    debug_hints: bool = False,
) -> PreparedSubmission:
    form_id = form_identifier(payload)
    flat = normalize(payload, dictionary, form_id=form_id)
    record = extract_record(flat, form_id=form_id)
    return PreparedSubmission(
        flat=flat, record=record, comments=compose(record, debug=debug_hints)
    )


def _category(pipeline: PipelineConfig) -> Optional[str]:
    value = (pipeline.category_id or "").strip()
    return value if value and value != "0" else None


def build_deal_fields(
    record: BusinessRecord,
    comments: str,
    contact_id: Optional[str],
    pipeline: PipelineConfig,
    title: str,
) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "TITLE": title[:TITLE_LIMIT],
        "CATEGORY_ID": _category(pipeline),
        "STAGE_ID": pipeline.stage_id,
        "CONTACT_ID": contact_id,
        "ASSIGNED_BY_ID": pipeline.owner_id or None,
        "SOURCE_ID": pipeline.source_id,
        "COMMENTS": comments,
    }
    for key, value in record.utm.items():
        fields[f"UTM_{key.upper()}"] = value or None
    return {key: value for key, value in fields.items() if value not in (None, "")}


def build_lead_fields(
    record: BusinessRecord,
    comments: str,
    pipeline: PipelineConfig,
    title: str,
) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "TITLE": title[:TITLE_LIMIT],
        "NAME": record.first_name,
        "LAST_NAME": record.last_name,
        "COMPANY_TITLE": record.company,
        "SOURCE_ID": pipeline.source_id,
        "ASSIGNED_BY_ID": pipeline.owner_id or None,
        "COMMENTS": comments,
        "ADDRESS": record.billing_street,
        "ADDRESS_CITY": record.billing_city,
        "ADDRESS_PROVINCE": record.billing_region,
        "ADDRESS_POSTAL_CODE": record.billing_postal,
    }
    if record.email:
        fields["EMAIL"] = [{"VALUE": record.email, "VALUE_TYPE": "WORK"}]
    if record.phone:
        fields["PHONE"] = [{"VALUE": record.phone, "VALUE_TYPE": "WORK"}]
    for key, value in record.utm.items():
        fields[f"UTM_{key.upper()}"] = value
    return {key: value for key, value in fields.items() if value not in (None, "")}


def submit_record(
    client: CRMClient,
    entity: str,
    fields: Dict[str, Any],
    *,
    contact_id: Optional[str] = None,
) -> SubmissionResult:
    try:
        if entity == "lead":
            record_id = client.add_lead(fields)
        else:
            record_id = client.add_deal(fields)
    except CRMApplicationError as exc:
        logger.warning("Bitrix rejected %s: %s", entity, exc)
        return SubmissionResult(
            ok=False,
            entity=entity,
            contact_id=contact_id,
            error_kind="application",
            error_code=exc.code,
            message=exc.description or exc.code,
        )
    except CRMTransientError as exc:
        logger.error("Bitrix unavailable while creating %s: %s", entity, exc)
        return SubmissionResult(
            ok=False,
            entity=entity,
            contact_id=contact_id,
            error_kind="transient",
            error_code=str(exc.status) if exc.status else "network",
            message=str(exc),
        )

    if not record_id:
        return SubmissionResult(
            ok=False,
            entity=entity,
            contact_id=contact_id,
            error_kind="application",
            error_code="EMPTY_RESULT",
            message=f"Bitrix returned no {entity} id",
        )
    logger.info("Created %s %s (contact %s)", entity, record_id, contact_id or "-")
    return SubmissionResult(
        ok=True, entity=entity, record_id=record_id, contact_id=contact_id
    )


def run_submission(
    payload: Any,
    form: str,
    *,
    settings: BridgeSettings,
    client: Optional[CRMClient] = None,
    dictionary: Optional[OptionDictionary] = None,
) -> SubmissionResult:
    profile = FORM_PROFILES[form]
    settings.require_crm()
    pipeline = (
        settings.require_pipeline(form)
        if profile.entity == "deal"
        else settings.pipeline_for(form)
    )

    prepared = prepare_submission(
        payload,
        dictionary=dictionary or build_dictionary(settings),
        debug_hints=settings.debug_hints,
    )
    record = prepared.record
    if profile.require_identity and not record.has_identity:
        raise MissingIdentityError("Email or phone required")

    client = client or CRMClient.from_settings(settings)
    title = profile.title(record)
    if profile.entity == "lead":
        fields = build_lead_fields(record, prepared.comments, pipeline, title)
        return submit_record(client, "lead", fields)

    contact_id = None
    if profile.link_contact:
        contact_id = reconcile_contact(
            client,
            record.email,
            record.phone,
            record.first_name,
            last_name=record.last_name,
            company=record.company,
        )
    fields = build_deal_fields(record, prepared.comments, contact_id, pipeline, title)
    return submit_record(client, "deal", fields, contact_id=contact_id)


__all__ = [
    "FORM_PROFILES",
    "FormProfile",
    "MissingIdentityError",
    "PreparedSubmission",
    "SubmissionResult",
    "build_deal_fields",
    "build_dictionary",
    "build_lead_fields",
    "prepare_submission",
    "run_submission",
    "submit_record",
]
