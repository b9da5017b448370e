"""Software passkey authenticator producing real ES256 WebAuthn payloads."""

from __future__ import annotations

import hashlib
import json
import os
import struct
from dataclasses import dataclass

import cbor2
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from quart_passkeys.client import AuthenticatorError, PlatformAuthenticator
from quart_passkeys.webauthn import base64url_to_bytes, bytes_to_base64url

RP_ID = "app.example.com"
ORIGIN = "https://app.example.com"

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_BE = 0x08
FLAG_BS = 0x10
FLAG_AT = 0x40


@dataclass
class SoftCredential:
    credential_id: bytes
    private_key: ec.EllipticCurvePrivateKey
    rp_id: str
    user_handle: bytes
    sign_count: int = 0


def _client_data(kind: str, challenge: str, origin: str) -> bytes:
    return json.dumps(
        {"type": kind, "challenge": challenge, "origin": origin, "crossOrigin": False},
        separators=(",", ":"),
    ).encode("utf-8")


def _cose_public_key(private_key) -> bytes:
    numbers = private_key.public_key().public_numbers()
    return cbor2.dumps(
        {
            1: 2,
            3: -7,
            -1: 1,
            -2: numbers.x.to_bytes(32, "big"),
            -3: numbers.y.to_bytes(32, "big"),
        }
    )


class SoftwareAuthenticator(PlatformAuthenticator):
    """Resident-key authenticator kept in memory.

    ``counter_step`` of 0 imitates authenticators that never count.
    """

    def __init__(self, origin, counter_step=1, backed_up=False, transports=("internal",)):
        self.origin = origin
        self.counter_step = counter_step
        self.backed_up = backed_up
        self.transports = list(transports)
        self.credentials: dict[bytes, SoftCredential] = {}
        self.cancel_next = False
        self.calls = 0

    async def is_platform_authenticator_available(self) -> bool:
        return True

    def _flags(self, extra=0) -> int:
        flags = FLAG_UP | FLAG_UV | extra
        if self.backed_up:
            flags |= FLAG_BE | FLAG_BS
        return flags

    def _maybe_cancel(self):
        self.calls += 1
        if self.cancel_next:
            self.cancel_next = False
            raise AuthenticatorError(
                "NotAllowedError",
                "The operation either timed out or was not allowed.",
            )

    def set_sign_count(self, credential_id: str, value: int):
        self.credentials[base64url_to_bytes(credential_id)].sign_count = value

    async def create(self, options: dict) -> dict:
        self._maybe_cancel()
        rp_id = options["rp"]["id"]
        excluded = {
            base64url_to_bytes(item["id"]) for item in options.get("excludeCredentials") or []
        }
        if excluded & set(self.credentials):
            raise AuthenticatorError("InvalidStateError", "Passkey already registered here")

        private_key = ec.generate_private_key(ec.SECP256R1())
        credential_id = os.urandom(32)
        credential = SoftCredential(
            credential_id=credential_id,
            private_key=private_key,
            rp_id=rp_id,
            user_handle=base64url_to_bytes(options["user"]["id"]),
        )
        self.credentials[credential_id] = credential

        auth_data = (
            hashlib.sha256(rp_id.encode("utf-8")).digest()
            + bytes([self._flags(FLAG_AT)])
            + struct.pack(">I", credential.sign_count)
            + bytes(16)
            + struct.pack(">H", len(credential_id))
            + credential_id
            + _cose_public_key(private_key)
        )
        attestation_object = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
        client_data = _client_data("webauthn.create", options["challenge"], self.origin)

        encoded_id = bytes_to_base64url(credential_id)
        return {
            "id": encoded_id,
            "rawId": encoded_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "attestationObject": bytes_to_base64url(attestation_object),
                "transports": list(self.transports),
            },
            "authenticatorAttachment": "platform",
            "clientExtensionResults": {},
        }

    def _pick(self, options: dict) -> SoftCredential:
        rp_id = options.get("rpId")
        allowed = [
            base64url_to_bytes(item["id"]) for item in options.get("allowCredentials") or []
        ]
        for credential in self.credentials.values():
            if credential.rp_id != rp_id:
                continue
            if allowed and credential.credential_id not in allowed:
                continue
            return credential
        raise AuthenticatorError("NotAllowedError", "No passkey available")

    async def get(self, options: dict) -> dict:
        self._maybe_cancel()
        credential = self._pick(options)
        credential.sign_count += self.counter_step
        return self.assert_credential(credential, options["challenge"])

    def assert_credential(self, credential: SoftCredential, challenge: str) -> dict:
        auth_data = (
            hashlib.sha256(credential.rp_id.encode("utf-8")).digest()
            + bytes([self._flags()])
            + struct.pack(">I", credential.sign_count)
        )
        client_data = _client_data("webauthn.get", challenge, self.origin)
        signature = credential.private_key.sign(
            auth_data + hashlib.sha256(client_data).digest(),
            ec.ECDSA(hashes.SHA256()),
        )
        encoded_id = bytes_to_base64url(credential.credential_id)
        return {
            "id": encoded_id,
            "rawId": encoded_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "authenticatorData": bytes_to_base64url(auth_data),
                "signature": bytes_to_base64url(signature),
                "userHandle": bytes_to_base64url(credential.user_handle),
            },
            "authenticatorAttachment": "platform",
            "clientExtensionResults": {},
        }
