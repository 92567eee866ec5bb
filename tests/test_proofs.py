"""Credential issuance, nullifier bundles and the proof verifier"""

from dataclasses import replace

import pytest

from config.config import ProofConfig
from zk.credentials import VoterCredential
from zk.exceptions import ErrorCode, ValidationError, VerificationFailure
from zk.nullifier import NullifierGenerator, validate_proposal_id, validate_vote_choice
from zk.verifier import ProofVerifier, VerificationStage
from zk.zk_proofs import NullifierProofBundle, derive_nullifier

BYTE_FIELDS = NullifierProofBundle.DIGEST_FIELDS


def flip(value: bytes, position: int) -> bytes:
    data = bytearray(value)
    data[position] ^= 0x01
    return bytes(data)


class TestCredentialIssuer:

    def test_credential_shape(self, issuer):
        credential = issuer.issue()
        for name in ('secret', 'commitment', 'public_key', 'private_key', 'blinding'):
            assert len(getattr(credential, name)) == 32
        assert credential.verify_commitment()
        assert not credential.is_registered

    def test_secrets_never_collide(self, issuer):
        secrets = {issuer.issue().secret for _ in range(1000)}
        assert len(secrets) == 1000

    def test_issue_time_comes_from_clock(self, issuer, clock):
        assert issuer.issue().issued_at == clock.now
        clock.advance(250)
        assert issuer.issue().issued_at == clock.now

    def test_repr_hides_key_material(self, issuer):
        credential = issuer.issue()
        text = repr(credential)
        assert credential.secret.hex() not in text
        assert credential.private_key.hex() not in text
        assert 'secret=' not in text

    def test_with_membership_keeps_keys(self, voter):
        assert isinstance(voter, VoterCredential)
        assert voter.is_registered
        assert voter.verify_commitment()


class TestValidation:

    @pytest.mark.parametrize("proposal_id", ["p1", "A-b_9", "x" * 64])
    def test_accepts_valid_proposal_ids(self, proposal_id):
        assert validate_proposal_id(proposal_id) == proposal_id

    @pytest.mark.parametrize("proposal_id", ["", "x" * 65, "has space", "p1;drop", "ü", "p1\n"])
    def test_rejects_bad_proposal_ids(self, proposal_id):
        with pytest.raises(ValidationError) as exc_info:
            validate_proposal_id(proposal_id)
        assert exc_info.value.code == ErrorCode.INVALID_PROPOSAL

    def test_rejects_non_string_proposal_id(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_proposal_id(7)
        assert exc_info.value.code == ErrorCode.TYPE_MISMATCH

    @pytest.mark.parametrize("choice", [2, -1, True, False, 1.0, "1", None])
    def test_rejects_bad_vote_choices(self, choice):
        with pytest.raises(ValidationError) as exc_info:
            validate_vote_choice(choice)
        assert exc_info.value.code == ErrorCode.INVALID_VOTE_CHOICE

    def test_generator_validates_before_drawing_entropy(self, generator, voter, monkeypatch):
        def no_entropy(n):
            raise AssertionError("entropy drawn for an invalid request")

        monkeypatch.setattr("zk.nullifier.secure_random_bytes", no_entropy)
        with pytest.raises(ValidationError):
            generator.derive(voter, "p1", 2)
        with pytest.raises(ValidationError):
            generator.derive(voter, "", 1)

    def test_unregistered_credential_cannot_vote(self, generator, issuer):
        with pytest.raises(ValidationError) as exc_info:
            generator.derive(issuer.issue(), "p1", 1)
        assert exc_info.value.code == ErrorCode.VOTER_NOT_ELIGIBLE

    def test_foreign_membership_path_is_refused(self, generator, voter, issuer, registry):
        other = issuer.issue()
        registry.register(other.commitment)
        with pytest.raises(ValidationError) as exc_info:
            generator.derive(other, "p1", 1, membership=voter.membership)
        assert exc_info.value.code == ErrorCode.VOTER_NOT_ELIGIBLE


class TestNullifierGenerator:

    def test_bundle_fields_are_fixed_width(self, bundle, clock):
        for name in BYTE_FIELDS:
            assert len(getattr(bundle, name)) == 32
        assert bundle.timestamp == clock.now

    def test_bundle_never_carries_secrets(self, bundle, voter):
        exported = bundle.to_dict()
        for value in exported.values():
            assert voter.secret.hex() not in str(value)
            assert voter.private_key.hex() not in str(value)

    def test_nullifier_is_deterministic_per_proposal(self, generator, voter):
        first = generator.derive(voter, "p1", 1)
        second = generator.derive(voter, "p1", 0)
        other = generator.derive(voter, "p2", 1)
        assert first.nullifier == second.nullifier == derive_nullifier(voter.secret, "p1")
        assert other.nullifier != first.nullifier
        assert first.nonce != second.nonce
        assert first.vote_commitment != second.vote_commitment

    def test_nullifiers_do_not_collide(self, issuer):
        credentials = [issuer.issue() for _ in range(100)]
        proposals = [f"proposal-{j}" for j in range(100)]
        nullifiers = {derive_nullifier(c.secret, p) for c in credentials for p in proposals}
        assert len(nullifiers) == 10_000

    def test_bundle_nullifiers_are_distinct(self, generator, issuer, registry):
        credentials = []
        for _ in range(20):
            credential = issuer.issue()
            registry.register(credential.commitment)
            credentials.append(credential)
        proposals = [f"proposal-{j}" for j in range(5)]

        nullifiers = set()
        for credential in credentials:
            membership = registry.membership_proof(registry.index_of(credential.commitment))
            for proposal_id in proposals:
                bundle = generator.derive(credential, proposal_id, 1, membership)
                assert bundle.nullifier == derive_nullifier(credential.secret, proposal_id)
                nullifiers.add(bundle.nullifier)
        assert len(nullifiers) == len(credentials) * len(proposals)

    def test_bundle_dict_form(self, bundle):
        assert NullifierProofBundle.from_dict(bundle.to_dict()) == bundle

    def test_malformed_bundle_dict(self, bundle):
        data = bundle.to_dict()
        data['nonce'] = "zz"
        with pytest.raises(ValidationError):
            NullifierProofBundle.from_dict(data)


class TestProofVerifier:

    def test_valid_bundle_verifies(self, verifier, bundle, registry):
        assert verifier.verify(bundle, "p1", registry.root)
        assert verifier.check(bundle, "p1", registry.root) is None

    def test_verification_is_pure(self, verifier, bundle, registry):
        results = [verifier.verify(bundle, "p1", registry.root) for _ in range(3)]
        assert results == [True, True, True]

    @pytest.mark.parametrize("name", BYTE_FIELDS)
    @pytest.mark.parametrize("position", [0, 13, 31])
    def test_any_flipped_byte_is_detected(self, verifier, bundle, registry, name, position):
        tampered = replace(bundle, **{name: flip(getattr(bundle, name), position)})
        assert not verifier.verify(tampered, "p1", registry.root)

    def test_timestamp_change_is_detected(self, verifier, bundle, registry):
        tampered = replace(bundle, timestamp=bundle.timestamp + 1)
        assert not verifier.verify(tampered, "p1", registry.root)

    def test_bundle_is_bound_to_proposal(self, verifier, bundle, registry):
        assert verifier.check(bundle, "p2", registry.root) == VerificationStage.NULLIFIER

    def test_bundle_is_bound_to_eligibility_root(self, verifier, bundle, registry):
        stage = verifier.check(bundle, "p1", flip(registry.root, 31))
        assert stage == VerificationStage.MEMBERSHIP

    @pytest.mark.parametrize("changes", [
        {'nullifier': bytes(31)},
        {'nonce': bytes(33)},
        {'range_proof': "00" * 32},
        {'timestamp': 0},
        {'timestamp': True},
        {'timestamp': 1.5},
    ])
    def test_structure_check(self, verifier, bundle, registry, changes):
        malformed = replace(bundle, **changes)
        assert verifier.check(malformed, "p1", registry.root) == VerificationStage.STRUCTURE

    def test_not_a_bundle(self, verifier, registry):
        assert not verifier.verify({"nullifier": bytes(32)}, "p1", registry.root)

    def test_invalid_proposal_fails_structure(self, verifier, bundle, registry):
        assert verifier.check(bundle, "bad id", registry.root) == VerificationStage.STRUCTURE

    def test_freshness_boundary(self, verifier, bundle, registry, clock):
        skew = verifier.max_skew_ms
        clock.advance(skew)
        assert verifier.verify(bundle, "p1", registry.root)
        clock.advance(1)
        assert verifier.check(bundle, "p1", registry.root) == VerificationStage.FRESHNESS

    def test_future_timestamps_are_bounded(self, verifier, bundle, registry, clock):
        clock.advance(-verifier.max_skew_ms)
        assert verifier.verify(bundle, "p1", registry.root)
        clock.advance(-1)
        assert not verifier.verify(bundle, "p1", registry.root)

    def test_configurable_skew(self, bundle, registry, clock):
        strict = ProofVerifier(ProofConfig(max_skew_ms=10), clock=clock)
        clock.advance(11)
        assert strict.check(bundle, "p1", registry.root) == VerificationStage.FRESHNESS

    def test_require_raises_verification_failure(self, verifier, bundle, registry):
        verifier.require(bundle, "p1", registry.root)
        with pytest.raises(VerificationFailure) as exc_info:
            verifier.require(replace(bundle, nonce=flip(bundle.nonce, 0)), "p1",
                             registry.root)
        assert exc_info.value.code == ErrorCode.PROOF_VERIFICATION_FAILED

    def test_generator_and_verifier_share_backend_contract(self, proof_config, clock,
                                                          voter, registry):
        generator = NullifierGenerator(proof_config, clock=clock)
        verifier = ProofVerifier(proof_config, clock=clock)
        for choice in (0, 1):
            assert verifier.verify(generator.derive(voter, "p9", choice), "p9",
                                   registry.root)
