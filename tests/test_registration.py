import pytest
from authenticator import ORIGIN, SoftwareAuthenticator

from quart_passkeys import (
    BadRequest,
    ChallengeNotFound,
    ChallengeType,
    IdentityMismatch,
    Unauthorized,
    VerificationFailed,
    passkey_registered,
    passkey_verification_failed,
)


@pytest.mark.asyncio
async def test_first_registration_stores_one_credential(
    registration, credentials, authenticator
):
    options = await registration.generate_options("user-a", "alice@example.com", "user-a")

    assert options["excludeCredentials"] == []
    assert options["challenge"]
    assert options["attestation"] == "none"
    assert options["rp"] == {"id": "app.example.com", "name": "Example"}
    assert options["user"]["name"] == "alice@example.com"
    assert options["authenticatorSelection"]["residentKey"] == "preferred"
    assert options["authenticatorSelection"]["userVerification"] == "preferred"

    response = await authenticator.create(options)
    credential = await registration.verify_and_store("user-a", response, "user-a")

    stored = await credentials.list_by_user("user-a")
    assert len(stored) == 1
    assert stored[0].credential_id == response["id"]
    assert stored[0].sign_count == 0
    assert stored[0].transports == ["internal"]
    assert stored[0].device_type == "single_device"
    assert stored[0].backed_up is False
    assert credential.id == stored[0].id


@pytest.mark.asyncio
async def test_replayed_registration_fails_with_challenge_not_found(
    registration, credentials, authenticator
):
    options = await registration.generate_options("user-a", "alice@example.com", "user-a")
    response = await authenticator.create(options)
    await registration.verify_and_store("user-a", response, "user-a")

    with pytest.raises(ChallengeNotFound):
        await registration.verify_and_store("user-a", response, "user-a")

    assert len(await credentials.list_by_user("user-a")) == 1


@pytest.mark.asyncio
async def test_exclusion_list_holds_only_the_users_credentials(register_passkey, registration):
    first = await register_passkey("user-a")
    second = await register_passkey("user-a", device=SoftwareAuthenticator(origin=ORIGIN))
    other = await register_passkey("user-b", "bob@example.com")

    options = await registration.generate_options("user-a", "alice@example.com", "user-a")
    excluded = {item["id"] for item in options["excludeCredentials"]}

    assert excluded == {first.credential_id, second.credential_id}
    assert other.credential_id not in excluded


@pytest.mark.asyncio
async def test_backed_up_passkey_is_recorded_as_multi_device(register_passkey):
    credential = await register_passkey(
        device=SoftwareAuthenticator(origin=ORIGIN, backed_up=True, transports=["hybrid", "internal"])
    )

    assert credential.backed_up is True
    assert credential.device_type == "multi_device"
    assert credential.transports == ["hybrid", "internal"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "user_id,caller_id",
    [("user-a", "user-b"), ("user-b", "user-a"), ("user-a", "")],
)
async def test_generate_options_rejects_other_callers(registration, challenges, user_id, caller_id):
    with pytest.raises(Unauthorized):
        await registration.generate_options(user_id, "alice@example.com", caller_id)

    assert await challenges.get(user_id, ChallengeType.REGISTRATION) is None


@pytest.mark.asyncio
async def test_verify_rejects_other_callers_without_touching_challenge(
    registration, challenges, authenticator, clock
):
    options = await registration.generate_options("user-a", "alice@example.com", "user-a")
    response = await authenticator.create(options)

    with pytest.raises(IdentityMismatch) as excinfo:
        await registration.verify_and_store("user-a", response, "user-b")

    assert excinfo.value.status_code == 400
    assert isinstance(excinfo.value, Unauthorized)
    assert await challenges.get("user-a", ChallengeType.REGISTRATION, now=clock()) is not None


@pytest.mark.asyncio
async def test_failed_verification_still_consumes_challenge(registration, credentials):
    options = await registration.generate_options("user-a", "alice@example.com", "user-a")
    phishing_site = SoftwareAuthenticator(origin="https://evil.example.net")
    response = await phishing_site.create(options)

    with pytest.raises(VerificationFailed) as excinfo:
        await registration.verify_and_store("user-a", response, "user-a")
    assert excinfo.value.message == "Registration verification failed"

    honest = SoftwareAuthenticator(origin=ORIGIN)
    with pytest.raises(ChallengeNotFound):
        await registration.verify_and_store("user-a", await honest.create(options), "user-a")

    assert await credentials.list_by_user("user-a") == []


@pytest.mark.asyncio
async def test_malformed_response_is_bad_request_and_consumes_challenge(
    registration, challenges, clock
):
    await registration.generate_options("user-a", "alice@example.com", "user-a")

    with pytest.raises(BadRequest):
        await registration.verify_and_store("user-a", {"id": "abc"}, "user-a")

    assert await challenges.get("user-a", ChallengeType.REGISTRATION, now=clock()) is None


@pytest.mark.asyncio
async def test_expired_registration_challenge_is_rejected(registration, authenticator, clock):
    options = await registration.generate_options("user-a", "alice@example.com", "user-a")
    response = await authenticator.create(options)

    clock.advance(minutes=5)

    with pytest.raises(ChallengeNotFound):
        await registration.verify_and_store("user-a", response, "user-a")


@pytest.mark.asyncio
async def test_last_generated_options_win(registration, authenticator):
    stale = await registration.generate_options("user-a", "alice@example.com", "user-a")
    fresh = await registration.generate_options("user-a", "alice@example.com", "user-a")
    assert stale["challenge"] != fresh["challenge"]

    with pytest.raises(VerificationFailed):
        await registration.verify_and_store(
            "user-a", await authenticator.create(stale), "user-a"
        )


@pytest.mark.asyncio
async def test_registration_emits_audit_signals(registration, authenticator):
    events = []

    async def on_registered(sender, **kwargs):
        events.append(("registered", kwargs["user_id"], kwargs["device_type"]))

    async def on_failed(sender, **kwargs):
        events.append(("failed", kwargs["ceremony"]))

    with passkey_registered.connected_to(on_registered), passkey_verification_failed.connected_to(
        on_failed
    ):
        options = await registration.generate_options("user-a", "alice@example.com", "user-a")
        await registration.verify_and_store("user-a", await authenticator.create(options), "user-a")

        options = await registration.generate_options("user-a", "alice@example.com", "user-a")
        bad = SoftwareAuthenticator(origin="https://evil.example.net")
        with pytest.raises(VerificationFailed):
            await registration.verify_and_store("user-a", await bad.create(options), "user-a")

    assert events == [("registered", "user-a", "single_device"), ("failed", "registration")]
