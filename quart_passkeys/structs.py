"""Shape checks for the JSON the browser sends back after a ceremony."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .errors import BadRequest

_BASE64URL = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")
_ATTACHMENTS = ("platform", "cross-platform")


def _require_str(payload: dict, key: str, where: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise BadRequest("Invalid passkey response", detail=f"{where}.{key} missing")
    return value


def _require_base64url(payload: dict, key: str, where: str) -> str:
    value = _require_str(payload, key, where)
    if not _BASE64URL.match(value):
        raise BadRequest(
            "Invalid passkey response", detail=f"{where}.{key} is not base64url"
        )
    return value


def _attachment(payload) -> str | None:
    value = payload.get("authenticatorAttachment")
    return value if value in _ATTACHMENTS else None


def _credential_envelope(payload) -> tuple[str, str, dict]:
    if not isinstance(payload, dict):
        raise BadRequest("Invalid passkey response", detail="credential is not an object")
    credential_id = _require_base64url(payload, "id", "credential")
    raw_id = _require_base64url(payload, "rawId", "credential")
    if payload.get("type") != "public-key":
        raise BadRequest("Invalid passkey response", detail="credential.type")
    response = payload.get("response")
    if not isinstance(response, dict):
        raise BadRequest("Invalid passkey response", detail="credential.response")
    return credential_id, raw_id, response


@dataclass
class RegistrationResponse:
    """``PublicKeyCredential`` returned by ``navigator.credentials.create``."""

    id: str
    raw_id: str
    client_data_json: str
    attestation_object: str
    transports: list[str] = field(default_factory=list)
    authenticator_attachment: str | None = None
    client_extension_results: dict = field(default_factory=dict)

    @classmethod
    def from_json(cls, payload) -> "RegistrationResponse":
        credential_id, raw_id, response = _credential_envelope(payload)
        transports = response.get("transports") or []
        if not isinstance(transports, list) or not all(
            isinstance(item, str) for item in transports
        ):
            raise BadRequest("Invalid passkey response", detail="response.transports")
        return cls(
            id=credential_id,
            raw_id=raw_id,
            client_data_json=_require_base64url(response, "clientDataJSON", "response"),
            attestation_object=_require_base64url(
                response, "attestationObject", "response"
            ),
            transports=list(transports),
            authenticator_attachment=_attachment(payload),
            client_extension_results=payload.get("clientExtensionResults") or {},
        )

    def to_json(self) -> dict:
        payload = {
            "id": self.id,
            "rawId": self.raw_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": self.client_data_json,
                "attestationObject": self.attestation_object,
                "transports": list(self.transports),
            },
            "clientExtensionResults": dict(self.client_extension_results),
        }
        if self.authenticator_attachment:
            payload["authenticatorAttachment"] = self.authenticator_attachment
        return payload


@dataclass
class AuthenticationResponse:
    """``PublicKeyCredential`` returned by ``navigator.credentials.get``."""

    id: str
    raw_id: str
    client_data_json: str
    authenticator_data: str
    signature: str
    user_handle: str | None = None
    authenticator_attachment: str | None = None
    client_extension_results: dict = field(default_factory=dict)

    @classmethod
    def from_json(cls, payload) -> "AuthenticationResponse":
        credential_id, raw_id, response = _credential_envelope(payload)
        user_handle = response.get("userHandle")
        if user_handle is not None and not isinstance(user_handle, str):
            raise BadRequest("Invalid passkey response", detail="response.userHandle")
        return cls(
            id=credential_id,
            raw_id=raw_id,
            client_data_json=_require_base64url(response, "clientDataJSON", "response"),
            authenticator_data=_require_base64url(
                response, "authenticatorData", "response"
            ),
            signature=_require_base64url(response, "signature", "response"),
            user_handle=user_handle or None,
            authenticator_attachment=_attachment(payload),
            client_extension_results=payload.get("clientExtensionResults") or {},
        )

    def to_json(self) -> dict:
        response = {
            "clientDataJSON": self.client_data_json,
            "authenticatorData": self.authenticator_data,
            "signature": self.signature,
        }
        if self.user_handle:
            response["userHandle"] = self.user_handle
        payload = {
            "id": self.id,
            "rawId": self.raw_id,
            "type": "public-key",
            "response": response,
            "clientExtensionResults": dict(self.client_extension_results),
        }
        if self.authenticator_attachment:
            payload["authenticatorAttachment"] = self.authenticator_attachment
        return payload
