"""Signals emitted by quart-passkeys. Attach audit-log writers here."""

from blinker import Namespace

_signals = Namespace()

passkey_registered = _signals.signal("passkey-registered")
passkey_authenticated = _signals.signal("passkey-authenticated")
passkey_deleted = _signals.signal("passkey-deleted")
passkey_verification_failed = _signals.signal("passkey-verification-failed")
