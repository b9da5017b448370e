"""In-process stores for single-worker deployments and tests."""

from __future__ import annotations

import asyncio
import dataclasses

from .datastore import ChallengeStore, CredentialRepository
from .errors import DuplicateCredential
from .models import Challenge, ChallengeType, Credential, utcnow


class MemoryChallengeStore(ChallengeStore):
    def __init__(self):
        self._entries: dict[tuple[str, ChallengeType], Challenge] = {}
        self._lock = asyncio.Lock()

    async def put(self, challenge: Challenge) -> None:
        key = (challenge.subject_key, ChallengeType(challenge.type))
        async with self._lock:
            self._entries[key] = dataclasses.replace(challenge)

    async def get(self, subject_key, type, now=None) -> Challenge | None:
        entry = self._entries.get((subject_key, ChallengeType(type)))
        if entry is None or entry.is_expired(now):
            return None
        return dataclasses.replace(entry)

    async def delete(self, subject_key, type) -> None:
        async with self._lock:
            self._entries.pop((subject_key, ChallengeType(type)), None)

    async def consume(self, subject_key, type, now=None) -> Challenge | None:
        async with self._lock:
            entry = self._entries.pop((subject_key, ChallengeType(type)), None)
        if entry is None or entry.is_expired(now):
            return None
        return entry

    async def purge_expired(self, now=None) -> int:
        now = now or utcnow()
        async with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)


def _copy(credential: Credential) -> Credential:
    return dataclasses.replace(credential, transports=list(credential.transports))


class MemoryCredentialRepository(CredentialRepository):
    def __init__(self):
        self._credentials: dict[str, Credential] = {}
        self._lock = asyncio.Lock()

    async def get(self, id) -> Credential | None:
        credential = self._credentials.get(id)
        return _copy(credential) if credential else None

    async def find_by_credential_id(self, credential_id) -> Credential | None:
        for credential in self._credentials.values():
            if credential.credential_id == credential_id:
                return _copy(credential)
        return None

    async def list_by_user(self, user_id) -> list[Credential]:
        credentials = [
            _copy(credential)
            for credential in self._credentials.values()
            if credential.user_id == user_id
        ]
        credentials.sort(key=lambda item: item.created_at, reverse=True)
        return credentials

    async def insert(self, credential: Credential) -> Credential:
        async with self._lock:
            for existing in self._credentials.values():
                if existing.credential_id == credential.credential_id:
                    raise DuplicateCredential(
                        detail=f"credential_id collision for user {existing.user_id}"
                    )
            self._credentials[credential.id] = _copy(credential)
        return credential

    async def update_sign_count(self, id, expected, new, last_used_at) -> bool:
        async with self._lock:
            credential = self._credentials.get(id)
            if credential is None or credential.sign_count != expected:
                return False
            credential.sign_count = new
            credential.last_used_at = last_used_at
        return True

    async def delete(self, id) -> bool:
        async with self._lock:
            return self._credentials.pop(id, None) is not None
