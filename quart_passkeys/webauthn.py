"""Thin wrappers over the webauthn package primitives."""

from __future__ import annotations

import base64
import json
import logging
import secrets

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .errors import VerificationFailed

logger = logging.getLogger(__name__)

CHALLENGE_BYTES = 32

# Raised by py_webauthn for bad signatures and malformed payloads alike.
_VERIFY_ERRORS = (WebAuthnException, ValueError, KeyError, TypeError)


def bytes_to_base64url(value: bytes) -> str:
    """Encode bytes to unpadded base64url."""
    return base64.urlsafe_b64encode(value).decode("utf-8").rstrip("=")


def base64url_to_bytes(value: str) -> bytes:
    """Decode unpadded base64url into bytes."""
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(f"{value}{padding}")


def generate_challenge() -> bytes:
    return secrets.token_bytes(CHALLENGE_BYTES)


def options_to_json_dict(options) -> dict:
    """Serialize WebAuthn option objects into JSON-safe dictionaries."""
    payload = options_to_json(options)
    if isinstance(payload, bytes):
        return json.loads(payload.decode("utf-8"))
    if isinstance(payload, str):
        return json.loads(payload)
    if isinstance(payload, dict):
        return payload
    raise RuntimeError("Unsupported WebAuthn options payload type")


def _transports(values) -> list[AuthenticatorTransport]:
    transports = []
    for value in values or []:
        try:
            transports.append(AuthenticatorTransport(value))
        except ValueError:
            logger.debug("Ignoring unknown authenticator transport %r", value)
    return transports


def credential_descriptor(credential, with_transports=True):
    transports = _transports(credential.transports) if with_transports else []
    return PublicKeyCredentialDescriptor(
        id=credential.credential_id_bytes(),
        transports=transports or None,
    )


async def begin_registration(
    user_id: str,
    user_name: str,
    rp_id,
    rp_name,
    challenge: bytes,
    existing_credentials=None,
    timeout: int = 60000,
):
    return generate_registration_options(
        rp_id=rp_id,
        rp_name=rp_name,
        challenge=challenge,
        user_id=user_id.encode("utf-8"),
        user_name=user_name,
        user_display_name=user_name,
        timeout=timeout,
        attestation=AttestationConveyancePreference.NONE,
        authenticator_selection=AuthenticatorSelectionCriteria(
            resident_key=ResidentKeyRequirement.PREFERRED,
            user_verification=UserVerificationRequirement.PREFERRED,
        ),
        exclude_credentials=[
            credential_descriptor(cred, with_transports=False)
            for cred in existing_credentials or []
        ],
    )


async def complete_registration(
    credential: dict,
    challenge: bytes,
    rp_id,
    expected_origin,
    require_user_verification: bool = False,
) -> dict:
    try:
        verification = verify_registration_response(
            credential=credential,
            expected_challenge=challenge,
            expected_rp_id=rp_id,
            expected_origin=expected_origin,
            require_user_verification=require_user_verification,
        )
    except _VERIFY_ERRORS as exc:
        raise VerificationFailed(
            "Registration verification failed", detail=str(exc)
        ) from exc

    device_type = getattr(verification, "credential_device_type", None)
    return {
        "credential_id": bytes_to_base64url(verification.credential_id),
        "public_key": base64.b64encode(verification.credential_public_key).decode(
            "ascii"
        ),
        "sign_count": verification.sign_count,
        "backed_up": bool(getattr(verification, "credential_backed_up", False)),
        "device_type": getattr(device_type, "value", device_type),
    }


async def begin_authentication(credentials, rp_id, challenge: bytes, timeout: int = 60000):
    return generate_authentication_options(
        rp_id=rp_id,
        challenge=challenge,
        timeout=timeout,
        user_verification=UserVerificationRequirement.PREFERRED,
        allow_credentials=[credential_descriptor(item) for item in credentials or []],
    )


async def complete_authentication(
    credential: dict,
    challenge: bytes,
    rp_id,
    expected_origin,
    stored_credential,
    require_user_verification: bool = False,
) -> int:
    try:
        verification = verify_authentication_response(
            credential=credential,
            expected_challenge=challenge,
            expected_rp_id=rp_id,
            expected_origin=expected_origin,
            credential_public_key=stored_credential.public_key_bytes(),
            credential_current_sign_count=stored_credential.sign_count,
            require_user_verification=require_user_verification,
        )
    except _VERIFY_ERRORS as exc:
        raise VerificationFailed("Authentication failed", detail=str(exc)) from exc
    return verification.new_sign_count


def check_sign_count(stored: int, new: int) -> bool:
    """Return False when the counter did not advance.

    Authenticators that never count report zero every time, which is fine.
    Once either side is nonzero the new value must be strictly greater.
    """
    if stored == 0 and new == 0:
        return True
    return new > stored
