"""Records persisted by the challenge store and credential repository."""

from __future__ import annotations

import base64
import datetime
import enum
from dataclasses import dataclass, field
from uuid import uuid4


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


class ChallengeType(str, enum.Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


@dataclass
class Challenge:
    """One in-flight ceremony.

    ``subject_key`` is the user id for registration and a generated session id
    for authentication, since the user is unknown until the assertion arrives.
    """

    subject_key: str
    challenge: str
    type: ChallengeType
    expires_at: datetime.datetime
    email: str | None = None

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        return (now or utcnow()) >= as_utc(self.expires_at)


@dataclass
class Credential:
    """A registered passkey.

    ``credential_id`` is base64url (globally unique), ``public_key`` is
    standard base64 of the COSE key bytes.
    """

    user_id: str
    credential_id: str
    public_key: str
    sign_count: int = 0
    device_type: str | None = None
    backed_up: bool = False
    transports: list[str] = field(default_factory=list)
    created_at: datetime.datetime = field(default_factory=utcnow)
    last_used_at: datetime.datetime | None = None
    id: str = field(default_factory=lambda: uuid4().hex)

    def public_key_bytes(self) -> bytes:
        return base64.b64decode(self.public_key)

    def credential_id_bytes(self) -> bytes:
        padding = "=" * (-len(self.credential_id) % 4)
        return base64.urlsafe_b64decode(f"{self.credential_id}{padding}")

    def to_dict(self) -> dict:
        last_used = self.last_used_at
        return {
            "id": self.id,
            "credential_id": self.credential_id,
            "device_type": self.device_type,
            "backed_up": self.backed_up,
            "transports": list(self.transports),
            "created_at": as_utc(self.created_at).isoformat(timespec="seconds"),
            "last_used_at": (
                as_utc(last_used).isoformat(timespec="seconds") if last_used else None
            ),
        }
