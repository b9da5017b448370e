"""Challenge store and credential repository contracts, with async SQLAlchemy backends."""

from __future__ import annotations

import datetime
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .errors import DuplicateCredential, UpstreamUnavailable
from .models import Challenge, ChallengeType, Credential, as_utc, utcnow

logger = logging.getLogger(__name__)


class ChallengeStore(ABC):
    """Single-use, time-boxed challenges keyed by ``(subject_key, type)``.

    ``put`` overwrites, so the last options request for a key wins. Expiry is
    checked on every read; ``purge_expired`` is only housekeeping.
    """

    @abstractmethod
    async def put(self, challenge: Challenge) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get(self, subject_key, type, now=None) -> Challenge | None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, subject_key, type) -> None:
        raise NotImplementedError

    @abstractmethod
    async def consume(self, subject_key, type, now=None) -> Challenge | None:
        """Remove the entry and return it if it was still live."""
        raise NotImplementedError

    @abstractmethod
    async def purge_expired(self, now=None) -> int:
        raise NotImplementedError


class CredentialRepository(ABC):
    """Registered passkeys. ``credential_id`` is unique across all users."""

    @abstractmethod
    async def get(self, id) -> Credential | None:
        raise NotImplementedError

    @abstractmethod
    async def find_by_credential_id(self, credential_id) -> Credential | None:
        raise NotImplementedError

    @abstractmethod
    async def list_by_user(self, user_id) -> list[Credential]:
        raise NotImplementedError

    @abstractmethod
    async def insert(self, credential: Credential) -> Credential:
        raise NotImplementedError

    @abstractmethod
    async def update_sign_count(self, id, expected, new, last_used_at) -> bool:
        """Set the counter only if it still equals ``expected``."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, id) -> bool:
        raise NotImplementedError


class Base(DeclarativeBase):
    pass


class PasskeyRow(Base):
    __tablename__ = "passkeys"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    credential_id: Mapped[str] = mapped_column(String(1366), unique=True)
    public_key: Mapped[str] = mapped_column(Text)
    counter: Mapped[int] = mapped_column(Integer, default=0)
    device_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    backed_up: Mapped[bool] = mapped_column(Boolean, default=False)
    transports: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    last_used_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def to_credential(self) -> Credential:
        return Credential(
            id=self.id,
            user_id=self.user_id,
            credential_id=self.credential_id,
            public_key=self.public_key,
            sign_count=self.counter,
            device_type=self.device_type,
            backed_up=bool(self.backed_up),
            transports=list(self.transports or []),
            created_at=as_utc(self.created_at),
            last_used_at=as_utc(self.last_used_at) if self.last_used_at else None,
        )


class ChallengeRow(Base):
    __tablename__ = "webauthn_challenges"

    subject_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    type: Mapped[str] = mapped_column(String(32), primary_key=True)
    challenge: Mapped[str] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    expires_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))


async def create_tables(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class _SQLAlchemyStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self):
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Passkey store operation failed")
            raise UpstreamUnavailable(detail=str(exc)) from exc


def _challenge_type(value) -> str:
    return ChallengeType(value).value


class SQLAlchemyChallengeStore(_SQLAlchemyStore, ChallengeStore):
    """Challenges in the ``webauthn_challenges`` table."""

    async def put(self, challenge: Challenge) -> None:
        type_ = _challenge_type(challenge.type)
        async with self._transaction() as session:
            await session.execute(
                delete(ChallengeRow)
                .where(
                    ChallengeRow.subject_key == challenge.subject_key,
                    ChallengeRow.type == type_,
                )
                .execution_options(synchronize_session=False)
            )
            session.add(
                ChallengeRow(
                    subject_key=challenge.subject_key,
                    type=type_,
                    challenge=challenge.challenge,
                    email=challenge.email,
                    expires_at=challenge.expires_at,
                )
            )

    async def get(self, subject_key, type, now=None) -> Challenge | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(ChallengeRow).filter_by(
                    subject_key=subject_key, type=_challenge_type(type)
                )
            )
            row = result.scalars().first()
            if row is None:
                return None
            challenge = Challenge(
                subject_key=row.subject_key,
                challenge=row.challenge,
                type=ChallengeType(row.type),
                email=row.email,
                expires_at=as_utc(row.expires_at),
            )
        if challenge.is_expired(now):
            return None
        return challenge

    async def delete(self, subject_key, type) -> None:
        async with self._transaction() as session:
            await session.execute(
                delete(ChallengeRow)
                .where(
                    ChallengeRow.subject_key == subject_key,
                    ChallengeRow.type == _challenge_type(type),
                )
                .execution_options(synchronize_session=False)
            )

    async def consume(self, subject_key, type, now=None) -> Challenge | None:
        type_ = _challenge_type(type)
        async with self._transaction() as session:
            # One statement, so two racing verify calls cannot both read it.
            result = await session.execute(
                delete(ChallengeRow)
                .where(
                    ChallengeRow.subject_key == subject_key,
                    ChallengeRow.type == type_,
                )
                .returning(
                    ChallengeRow.challenge,
                    ChallengeRow.email,
                    ChallengeRow.expires_at,
                )
                .execution_options(synchronize_session=False)
            )
            row = result.first()
        if row is None:
            return None
        challenge = Challenge(
            subject_key=subject_key,
            challenge=row.challenge,
            type=ChallengeType(type_),
            email=row.email,
            expires_at=as_utc(row.expires_at),
        )
        if challenge.is_expired(now):
            return None
        return challenge

    async def purge_expired(self, now=None) -> int:
        async with self._transaction() as session:
            result = await session.execute(
                delete(ChallengeRow)
                .where(ChallengeRow.expires_at <= (now or utcnow()))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0


class SQLAlchemyCredentialRepository(_SQLAlchemyStore, CredentialRepository):
    """Credentials in the ``passkeys`` table."""

    async def _first(self, **kwargs) -> Credential | None:
        async with self._transaction() as session:
            result = await session.execute(select(PasskeyRow).filter_by(**kwargs))
            row = result.scalars().first()
            return row.to_credential() if row is not None else None

    async def get(self, id) -> Credential | None:
        return await self._first(id=id)

    async def find_by_credential_id(self, credential_id) -> Credential | None:
        return await self._first(credential_id=credential_id)

    async def list_by_user(self, user_id) -> list[Credential]:
        async with self._transaction() as session:
            result = await session.execute(
                select(PasskeyRow)
                .filter_by(user_id=user_id)
                .order_by(PasskeyRow.created_at.desc())
            )
            return [row.to_credential() for row in result.scalars().all()]

    async def insert(self, credential: Credential) -> Credential:
        try:
            async with self._transaction() as session:
                session.add(
                    PasskeyRow(
                        id=credential.id,
                        user_id=credential.user_id,
                        credential_id=credential.credential_id,
                        public_key=credential.public_key,
                        counter=credential.sign_count,
                        device_type=credential.device_type,
                        backed_up=credential.backed_up,
                        transports=list(credential.transports),
                        created_at=credential.created_at,
                        last_used_at=credential.last_used_at,
                    )
                )
        except IntegrityError as exc:
            raise DuplicateCredential(detail=str(exc.orig)) from exc
        return credential

    async def update_sign_count(self, id, expected, new, last_used_at) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                update(PasskeyRow)
                .where(PasskeyRow.id == id, PasskeyRow.counter == expected)
                .values(counter=new, last_used_at=last_used_at)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def delete(self, id) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                delete(PasskeyRow)
                .where(PasskeyRow.id == id)
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)
