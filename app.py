"""Webhook endpoints that push form submissions into Bitrix24."""

from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs

from flask import Flask, Response, jsonify, request
from dotenv import load_dotenv

# pick up B24_WEBHOOK_BASE and friends from a local .env
load_dotenv()

from tally_bitrix.config import BridgeSettings, ConfigurationError
from tally_bitrix.crm_client import CRMClient
from tally_bitrix.submission import MissingIdentityError, build_dictionary, run_submission

app = Flask(__name__)

ALLOWED_METHODS = "GET, POST, OPTIONS"

FORM_ENDPOINTS = {
    "/api/lead-to-bitrix": "lead",
    "/api/quote-to-deal": "quote",
    "/api/request-to-deal": "request",
}


def _cors_headers(settings: BridgeSettings) -> Dict[str, str]:
    origin = request.headers.get("Origin", "")
    if settings.cors_permissive:
        allow = "*"
    elif origin and origin in settings.allowed_origins:
        allow = origin
    else:
        allow = settings.allowed_origins[0]
    return {
        "Access-Control-Allow-Origin": allow,
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": request.headers.get(
            "Access-Control-Request-Headers", "Content-Type"
        ),
        "Vary": "Origin",
    }


def _with_cors(response: Response, status: int, settings: BridgeSettings) -> Tuple[Response, int]:
    response.headers.update(_cors_headers(settings))
    return response, status


def _read_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    if request.form:
        return {
            key: values if len(values) > 1 else values[0]
            for key, values in request.form.to_dict(flat=False).items()
        }
    raw = request.get_data(as_text=True) or ""
    if not raw.strip():
        return {}
    try:
        decoded = json.loads(raw)
        if isinstance(decoded, dict):
            return decoded
    except ValueError:
        pass
    return {
        key: values if len(values) > 1 else values[0]
        for key, values in parse_qs(raw, keep_blank_values=False).items()
    }


def _build_client(settings: BridgeSettings) -> CRMClient:
    return CRMClient.from_settings(settings)


def _handle_form(form: str):
    try:
        settings = BridgeSettings.from_env()
    except ConfigurationError as exc:
        app.logger.error("Invalid configuration: %s", exc)
        return jsonify({"error": str(exc)}), 500

    # preflight always gets an empty 204; the browser enforces Allow-Origin
    if request.method == "OPTIONS":
        return _with_cors(app.response_class(status=204), 204, settings)

    origin: Optional[str] = request.headers.get("Origin")
    if not settings.origin_allowed(origin):
        app.logger.warning("Rejected %s from origin %s", request.method, origin)
        return _with_cors(jsonify({"error": "Origin not allowed"}), 403, settings)

    if request.method == "GET":
        body = {"ok": True, "method": "GET", "stage": "ready", "form": form}
        body.update(settings.describe())
        return _with_cors(jsonify(body), 200, settings)

    payload = _read_body()
    try:
        client = _build_client(settings)
        result = run_submission(
            payload,
            form,
            settings=settings,
            client=client,
            dictionary=build_dictionary(settings),
        )
    except MissingIdentityError as exc:
        return _with_cors(jsonify({"error": str(exc)}), 400, settings)
    except ConfigurationError as exc:
        app.logger.error("Missing configuration for %s: %s", form, exc)
        return _with_cors(jsonify({"error": str(exc)}), 500, settings)
    except Exception:  # pragma: no cover - last resort
        app.logger.exception("Form submission failed for %s", form)
        return _with_cors(jsonify({"error": "Internal error"}), 500, settings)

    if result.ok:
        body = {
            "status": "created",
            "entity": result.entity,
            "id": result.record_id,
            "contact_id": result.contact_id,
        }
        return _with_cors(jsonify(body), 200, settings)

    body = {
        "error": "Bitrix error",
        "kind": result.error_kind,
        "code": result.error_code,
        "description": result.message,
    }
    return _with_cors(jsonify(body), 502, settings)


def _register_form_endpoints() -> None:
    for path, form in FORM_ENDPOINTS.items():
        app.add_url_rule(
            path,
            endpoint=f"{form}_form",
            view_func=lambda form=form: _handle_form(form),
            methods=["GET", "POST", "OPTIONS"],
            provide_automatic_options=False,
        )


_register_form_endpoints()


@app.route("/health")
def health():
    return jsonify({"status": "healthy"})


@app.errorhandler(405)
def method_not_allowed(_exc):
    return jsonify({"error": "Method not allowed"}), 405


if __name__ == "__main__":  # pragma: no cover
    host = os.getenv("HOST", "0.0.0.0")
    try:
        port = int(os.getenv("PORT", "7010"))
    except ValueError:
        port = 7010
    debug = os.getenv("FLASK_DEBUG", "0") not in {"0", "false", "False"}
    app.run(host=host, port=port, debug=debug)
