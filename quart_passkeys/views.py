"""Passkey blueprint: JSON ceremony endpoints and credential management."""

from __future__ import annotations

import logging

from quart import Blueprint, current_app, request
from werkzeug.exceptions import HTTPException

from .ceremonies import AuthenticationCeremony, CeremonySettings, RegistrationCeremony
from .decorators import identity_required
from .errors import BadRequest, PasskeyError, PasskeyNotFound, UpstreamUnavailable
from .proxies import _passkeys, get_current_identity
from .signals import passkey_deleted

logger = logging.getLogger(__name__)

passkeys_bp = Blueprint("passkeys", __name__)


def _webauthn_rp_id() -> str:
    configured = current_app.config.get("PASSKEY_RP_ID")
    if configured:
        return str(configured)
    return request.host.split(":", 1)[0]


def _webauthn_expected_origin():
    configured = current_app.config.get("PASSKEY_EXPECTED_ORIGIN")
    if isinstance(configured, (list, tuple)):
        return list(configured)
    if configured:
        return str(configured)
    return f"{request.scheme}://{request.host}"


def _webauthn_rp_name() -> str:
    return str(current_app.config.get("PASSKEY_RP_NAME") or _webauthn_rp_id())


def _settings() -> CeremonySettings:
    config = current_app.config
    return CeremonySettings(
        rp_id=_webauthn_rp_id(),
        rp_name=_webauthn_rp_name(),
        expected_origin=_webauthn_expected_origin(),
        challenge_timeout=config["PASSKEY_CHALLENGE_TIMEOUT"],
        timeout_ms=int(config["PASSKEY_CEREMONY_TIMEOUT_MS"]),
        require_user_verification=bool(config["PASSKEY_REQUIRE_USER_VERIFICATION"]),
    )


def _registration() -> RegistrationCeremony:
    return RegistrationCeremony(_passkeys.challenges, _passkeys.credentials, _settings())


def _authentication() -> AuthenticationCeremony:
    return AuthenticationCeremony(
        _passkeys.challenges,
        _passkeys.credentials,
        _passkeys.identity,
        _settings(),
    )


async def _json_body() -> dict:
    payload = await request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BadRequest("Request body must be a JSON object")
    return payload


@passkeys_bp.before_request
async def _cors_preflight():
    if request.method == "OPTIONS":
        return "ok", 200
    return None


@passkeys_bp.after_request
async def _cors_headers(response):
    config = current_app.config
    response.headers["Access-Control-Allow-Origin"] = config["PASSKEY_CORS_ALLOW_ORIGIN"]
    response.headers["Access-Control-Allow-Headers"] = config["PASSKEY_CORS_ALLOW_HEADERS"]
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
    return response


@passkeys_bp.errorhandler(PasskeyError)
async def _handle_passkey_error(exc: PasskeyError):
    if exc.detail:
        logger.info("%s: %s", type(exc).__name__, exc.detail)
    return exc.to_dict(), exc.status_code


@passkeys_bp.errorhandler(Exception)
async def _handle_unexpected_error(exc: Exception):
    if isinstance(exc, HTTPException):
        return exc
    logger.exception("Unhandled error in passkey endpoint %s", request.path)
    error = UpstreamUnavailable()
    return error.to_dict(), error.status_code


@passkeys_bp.route("/webauthn-registration-options", methods=["POST", "OPTIONS"])
@identity_required
async def registration_options():
    body = await _json_body()
    return await _registration().generate_options(
        body.get("userId"), body.get("email"), get_current_identity()
    )


@passkeys_bp.route("/webauthn-registration-verify", methods=["POST", "OPTIONS"])
@identity_required
async def registration_verify():
    body = await _json_body()
    await _registration().verify_and_store(
        body.get("userId"), body.get("registration"), get_current_identity()
    )
    return {"success": True}


@passkeys_bp.route("/webauthn-authentication-options", methods=["POST", "OPTIONS"])
async def authentication_options():
    body = await _json_body()
    email = body.get("email")
    options, session_id = await _authentication().generate_options(
        email if isinstance(email, str) else None
    )
    return {**options, "sessionId": session_id}


@passkeys_bp.route("/webauthn-authentication-verify", methods=["POST", "OPTIONS"])
async def authentication_verify():
    body = await _json_body()
    session_id = body.get("sessionId")
    return await _authentication().verify_and_issue_session(
        body.get("authentication"),
        session_id if isinstance(session_id, str) else None,
    )


@passkeys_bp.route("/passkeys", methods=["GET", "OPTIONS"])
@identity_required
async def list_passkeys():
    credentials = await _passkeys.credentials.list_by_user(get_current_identity())
    return {"passkeys": [credential.to_dict() for credential in credentials]}


@passkeys_bp.route("/passkeys/<passkey_id>", methods=["DELETE", "OPTIONS"])
@identity_required
async def delete_passkey(passkey_id):
    user_id = get_current_identity()
    credential = await _passkeys.credentials.get(passkey_id)
    # Someone else's passkey looks exactly like a missing one.
    if credential is None or credential.user_id != user_id:
        raise PasskeyNotFound(detail=f"{user_id} asked to delete {passkey_id}")

    await _passkeys.credentials.delete(credential.id)
    logger.info("User %s removed passkey %s", user_id, credential.id)
    await passkey_deleted.send_async(
        current_app._get_current_object(), user_id=user_id, credential=credential
    )
    return {"success": True}
