"""
Tests for challenge validation.
"""
import asyncio
import threading

import pytest

from medattest.challenges.exceptions import (
    ChallengeAlreadyUsed,
    ChallengeAttemptsExceeded,
    ChallengeExpired,
    ChallengeMismatch,
    ChallengeNotFound
)
from medattest.challenges import validator as validator_module
from medattest.challenges.issuer import ChallengeIssuer
from medattest.challenges.models import Challenge, ChallengeChannel, ConsumedReason
from medattest.core.audit_models import AuditLog

from conftest import LICENSE, PHYSICIAN_EMAIL, TestingSessionLocal


def issue(issuer, delivery):
    handle = asyncio.run(issuer.issue(LICENSE, ChallengeChannel.EMAIL, PHYSICIAN_EMAIL))
    return handle, delivery.latest_code(PHYSICIAN_EMAIL)


def wrong_code(code):
    return "100000" if code != "100000" else "100001"


def test_correct_code_yields_proof(db, issuer, validator, delivery, clock):
    handle, code = issue(issuer, delivery)

    proof = asyncio.run(validator.validate(handle.challenge_id, code))

    assert proof.challenge_id == handle.challenge_id
    assert proof.license_number == LICENSE
    assert proof.code == code
    assert proof.validated_at == clock()
    stored = db.get(Challenge, handle.challenge_id)
    assert stored.consumed is True
    assert stored.consumed_reason == ConsumedReason.VALIDATED


def test_unknown_challenge_is_not_found(db, validator):
    with pytest.raises(ChallengeNotFound):
        asyncio.run(validator.validate("does-not-exist", "123456"))


def test_scenario_a_expired_even_with_correct_code(db, issuer, validator, delivery, clock):
    handle, code = issue(issuer, delivery)

    clock.advance(minutes=10, seconds=1)

    with pytest.raises(ChallengeExpired):
        asyncio.run(validator.validate(handle.challenge_id, code))


def test_code_is_rejected_exactly_at_expiry(db, issuer, validator, delivery, clock):
    handle, code = issue(issuer, delivery)

    clock.advance(minutes=10)

    with pytest.raises(ChallengeExpired):
        asyncio.run(validator.validate(handle.challenge_id, code))


def test_scenario_b_mismatch_then_success(db, issuer, validator, delivery):
    handle, code = issue(issuer, delivery)

    with pytest.raises(ChallengeMismatch) as exc_info:
        asyncio.run(validator.validate(handle.challenge_id, wrong_code(code)))
    assert exc_info.value.attempts_remaining == 4
    assert exc_info.value.retryable is True

    proof = asyncio.run(validator.validate(handle.challenge_id, code))
    assert proof.code == code


def test_scenario_c_replay_of_correct_code_is_already_used(db, issuer, validator, delivery):
    handle, code = issue(issuer, delivery)

    asyncio.run(validator.validate(handle.challenge_id, code))

    with pytest.raises(ChallengeAlreadyUsed):
        asyncio.run(validator.validate(handle.challenge_id, code))
    with pytest.raises(ChallengeAlreadyUsed):
        asyncio.run(validator.validate(handle.challenge_id, wrong_code(code)))


def test_already_used_is_checked_before_expiry(db, issuer, validator, delivery, clock):
    handle, code = issue(issuer, delivery)
    asyncio.run(validator.validate(handle.challenge_id, code))

    clock.advance(hours=1)

    with pytest.raises(ChallengeAlreadyUsed):
        asyncio.run(validator.validate(handle.challenge_id, code))


def test_formatting_noise_is_stripped(db, issuer, validator, delivery):
    handle, code = issue(issuer, delivery)
    typed = f"{code[:2]} {code[2:4]}-{code[4:]}"

    proof = asyncio.run(validator.validate(handle.challenge_id, typed))

    assert proof.code == code


def test_spaced_code_matches_like_plain_code(db, validator, delivery, clock):
    issuer = ChallengeIssuer(TestingSessionLocal, delivery, clock=clock, code_generator=lambda: "123456")
    handle = asyncio.run(issuer.issue(LICENSE, ChallengeChannel.EMAIL, PHYSICIAN_EMAIL))

    proof = asyncio.run(validator.validate(handle.challenge_id, "12 34-56"))

    assert proof.code == "123456"


def test_short_code_counts_as_mismatch(db, issuer, validator, delivery):
    handle, code = issue(issuer, delivery)

    with pytest.raises(ChallengeMismatch):
        asyncio.run(validator.validate(handle.challenge_id, code[:5]))

    db.expire_all()
    assert db.get(Challenge, handle.challenge_id).attempts == 1


def test_five_mismatches_exhaust_the_challenge(db, issuer, validator, delivery):
    handle, code = issue(issuer, delivery)
    bad = wrong_code(code)

    for remaining in (4, 3, 2, 1):
        with pytest.raises(ChallengeMismatch) as exc_info:
            asyncio.run(validator.validate(handle.challenge_id, bad))
        assert exc_info.value.attempts_remaining == remaining

    with pytest.raises(ChallengeAttemptsExceeded):
        asyncio.run(validator.validate(handle.challenge_id, bad))

    with pytest.raises(ChallengeAlreadyUsed):
        asyncio.run(validator.validate(handle.challenge_id, code))

    db.expire_all()
    assert db.get(Challenge, handle.challenge_id).consumed_reason == ConsumedReason.ATTEMPTS_EXHAUSTED


def test_superseded_code_never_validates(db, issuer, validator, delivery):
    old_handle, old_code = issue(issuer, delivery)
    new_handle, new_code = issue(issuer, delivery)

    with pytest.raises(ChallengeAlreadyUsed):
        asyncio.run(validator.validate(old_handle.challenge_id, old_code))

    proof = asyncio.run(validator.validate(new_handle.challenge_id, new_code))
    assert proof.challenge_id == new_handle.challenge_id


def test_repeated_submit_yields_one_proof(db, issuer, validator, delivery):
    handle, code = issue(issuer, delivery)

    async def submit_twice():
        return await asyncio.gather(
            validator.validate(handle.challenge_id, code),
            validator.validate(handle.challenge_id, code),
            return_exceptions=True
        )

    outcomes = asyncio.run(submit_twice())

    proofs = [outcome for outcome in outcomes if not isinstance(outcome, Exception)]
    failures = [outcome for outcome in outcomes if isinstance(outcome, Exception)]
    assert len(proofs) == 1
    assert len(failures) == 1 and isinstance(failures[0], ChallengeAlreadyUsed)


def test_concurrent_validation_loses_compare_and_set(db, issuer, validator, delivery, monkeypatch):
    handle, code = issue(issuer, delivery)
    rival_outcomes = []
    rival_started = []
    original_verify = validator_module.verify_code_hash

    def run_rival():
        try:
            rival_outcomes.append(asyncio.run(validator.validate(handle.challenge_id, code)))
        except ChallengeAlreadyUsed as e:
            rival_outcomes.append(e)

    def verify_while_rival_completes(submitted, code_hash):
        matches = original_verify(submitted, code_hash)
        if not rival_started:
            # The rival validates the same code between our read and our consume
            rival_started.append(True)
            rival = threading.Thread(target=run_rival)
            rival.start()
            rival.join()
        return matches

    monkeypatch.setattr(validator_module, "verify_code_hash", verify_while_rival_completes)

    with pytest.raises(ChallengeAlreadyUsed):
        asyncio.run(validator.validate(handle.challenge_id, code))

    assert len(rival_outcomes) == 1
    assert rival_outcomes[0].challenge_id == handle.challenge_id
    db.expire_all()
    stored = db.get(Challenge, handle.challenge_id)
    assert stored.consumed is True
    assert stored.consumed_reason == ConsumedReason.VALIDATED
    concurrent = [entry for entry in db.query(AuditLog).all() if (entry.details or {}).get("concurrent")]
    assert len(concurrent) == 1


def test_validate_for_license_uses_live_challenge(db, issuer, validator, delivery):
    issue(issuer, delivery)
    _, new_code = issue(issuer, delivery)

    proof = asyncio.run(validator.validate_for_license(LICENSE, new_code))

    assert proof.code == new_code


def test_validate_for_unknown_license_is_not_found(db, validator):
    with pytest.raises(ChallengeNotFound):
        asyncio.run(validator.validate_for_license("CRM000", "123456"))


def test_every_outcome_is_audited(db, issuer, validator, delivery):
    handle, code = issue(issuer, delivery)
    with pytest.raises(ChallengeMismatch):
        asyncio.run(validator.validate(handle.challenge_id, wrong_code(code)))
    asyncio.run(validator.validate(handle.challenge_id, code))

    actions = [entry.action for entry in db.query(AuditLog).order_by(AuditLog.id).all()]
    assert actions == ["OTP_ISSUED", "OTP_VALIDATION_FAILED_MISMATCH", "OTP_VALIDATION_SUCCESS"]
