"""Public API for quart-passkeys."""

from .ceremonies import AuthenticationCeremony, CeremonySettings, RegistrationCeremony
from .client import AuthenticatorError, CeremonyResult, PasskeyClient, PlatformAuthenticator
from .core import Passkeys
from .datastore import (
    ChallengeStore,
    CredentialRepository,
    SQLAlchemyChallengeStore,
    SQLAlchemyCredentialRepository,
)
from .decorators import identity_required
from .errors import (
    BadRequest,
    Cancelled,
    ChallengeNotFound,
    CredentialNotFound,
    DuplicateCredential,
    IdentityMismatch,
    PasskeyError,
    PasskeyNotFound,
    Unauthorized,
    UpstreamUnavailable,
    VerificationFailed,
)
from .identity import IdentityProvider, SignedTokenIdentityProvider, UserDirectory
from .memory import MemoryChallengeStore, MemoryCredentialRepository
from .models import Challenge, ChallengeType, Credential
from .proxies import current_identity
from .signals import (
    passkey_authenticated,
    passkey_deleted,
    passkey_registered,
    passkey_verification_failed,
)

__all__ = [
    "Passkeys",
    "RegistrationCeremony",
    "AuthenticationCeremony",
    "CeremonySettings",
    "PasskeyClient",
    "PlatformAuthenticator",
    "AuthenticatorError",
    "CeremonyResult",
    "ChallengeStore",
    "CredentialRepository",
    "MemoryChallengeStore",
    "MemoryCredentialRepository",
    "SQLAlchemyChallengeStore",
    "SQLAlchemyCredentialRepository",
    "IdentityProvider",
    "SignedTokenIdentityProvider",
    "UserDirectory",
    "Challenge",
    "ChallengeType",
    "Credential",
    "identity_required",
    "current_identity",
    "PasskeyError",
    "BadRequest",
    "Cancelled",
    "ChallengeNotFound",
    "CredentialNotFound",
    "DuplicateCredential",
    "IdentityMismatch",
    "PasskeyNotFound",
    "Unauthorized",
    "UpstreamUnavailable",
    "VerificationFailed",
    "passkey_registered",
    "passkey_authenticated",
    "passkey_deleted",
    "passkey_verification_failed",
]
