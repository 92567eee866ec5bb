"""Nullifier ledger: at-most-once acceptance, digests and integrity"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import pytest

from registry.ledger import NullifierLedger, RejectionReason, VoteStatus
from utils.utils import PerformanceMonitor
from zk.exceptions import (
    ErrorCode,
    IntegrityViolation,
    UnknownProposalError,
    ValidationError,
)
from zk.pedersen import INFINITY_BYTES


@pytest.fixture
def opened(ledger, voter):
    """Ledger with p1 and p2 open against the registry root that includes ``voter``"""
    ledger.open_proposal("p1")
    ledger.open_proposal("p2")
    return ledger


class TestOpenProposal:

    def test_snapshots_registry_root(self, ledger, registry, voter):
        assert ledger.open_proposal("p1") == registry.root
        assert ledger.eligibility_root("p1") == registry.root
        assert ledger.is_open("p1")

    def test_reopening_is_idempotent(self, ledger, voter):
        root = ledger.open_proposal("p1")
        assert ledger.open_proposal("p1", root) == root
        assert ledger.proposals == ["p1"]

    def test_rebinding_to_another_root_is_refused(self, ledger, voter):
        ledger.open_proposal("p1")
        with pytest.raises(ValidationError):
            ledger.open_proposal("p1", bytes(32))

    def test_root_required_without_registry(self, verifier, ledger_config):
        ledger = NullifierLedger(verifier, config=ledger_config)
        with pytest.raises(ValidationError) as exc_info:
            ledger.open_proposal("p1")
        assert exc_info.value.code == ErrorCode.MISSING_PARAMETER

    def test_malformed_root(self, ledger):
        with pytest.raises(ValidationError):
            ledger.open_proposal("p1", b"short")


class TestSubmit:

    def test_accepts_valid_bundle(self, opened, bundle):
        before = opened.scope_digest("p1")
        ledger_digest = opened.digest()
        result = opened.submit(bundle, "p1")
        assert result.accepted
        assert result.reason is None
        assert result.digest == opened.scope_digest("p1") != before
        assert opened.digest() != ledger_digest

    def test_at_most_once_per_scope(self, opened, generator, voter):
        assert opened.submit(generator.derive(voter, "p1", 1), "p1").accepted
        digest = opened.scope_digest("p1")

        for choice in (1, 0):
            result = opened.submit(generator.derive(voter, "p1", choice), "p1")
            assert not result.accepted
            assert result.reason == RejectionReason.DOUBLE_VOTE
            assert result.digest == digest

        assert len(opened.entries("p1")) == 1

    def test_replayed_bundle_is_a_double_vote(self, opened, bundle):
        opened.submit(bundle, "p1")
        assert opened.submit(bundle, "p1").reason == RejectionReason.DOUBLE_VOTE

    def test_cross_scope_independence(self, opened, generator, voter):
        assert opened.submit(generator.derive(voter, "p1", 1), "p1").accepted
        assert opened.submit(generator.derive(voter, "p2", 0), "p2").accepted
        assert opened.stats()['votes_per_proposal'] == {"p1": 1, "p2": 1}

    def test_invalid_proof_changes_nothing(self, opened, bundle):
        digest = opened.digest()
        tampered = replace(bundle, range_proof=bytes(32))
        result = opened.submit(tampered, "p1")
        assert not result.accepted
        assert result.reason == RejectionReason.INVALID_PROOF
        assert opened.digest() == digest
        assert opened.status("p1", nullifier=bundle.nullifier) == VoteStatus.CAN_VOTE

    def test_bundle_for_other_proposal_is_invalid(self, opened, bundle):
        assert opened.submit(bundle, "p2").reason == RejectionReason.INVALID_PROOF

    def test_stale_bundle_is_invalid(self, opened, bundle, clock, verifier):
        clock.advance(verifier.max_skew_ms + 1)
        assert opened.submit(bundle, "p1").reason == RejectionReason.INVALID_PROOF

    def test_unopened_scope(self, ledger, bundle):
        with pytest.raises(UnknownProposalError) as exc_info:
            ledger.submit(bundle, "p1")
        assert isinstance(exc_info.value, ValidationError)

    def test_invalid_proposal_id(self, opened, bundle):
        with pytest.raises(ValidationError):
            opened.submit(bundle, "p 1")

    def test_late_registrant_is_not_eligible_for_open_scope(self, opened, issuer,
                                                            registry, generator):
        late = issuer.issue()
        late = late.with_membership(registry.register(late.commitment))
        result = opened.submit(generator.derive(late, "p1", 1), "p1")
        assert result.reason == RejectionReason.INVALID_PROOF

    def test_submissions_are_logged_without_secrets(self, opened, bundle, voter, caplog):
        with caplog.at_level(logging.INFO, logger="registry.ledger"):
            opened.submit(bundle, "p1")
            opened.submit(bundle, "p1")
        assert "Accepted vote #0 on p1" in caplog.text
        assert "Double vote prevented" in caplog.text
        assert bundle.nullifier.hex() not in caplog.text
        assert voter.secret.hex() not in caplog.text


class TestConcurrency:

    def test_concurrent_duplicates_accept_exactly_once(self, opened, generator, voter):
        bundles = [generator.derive(voter, "p1", i % 2) for i in range(8)]
        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda b: opened.submit(b, "p1"), bundles))

        assert sum(r.accepted for r in results) == 1
        assert sum(r.reason == RejectionReason.DOUBLE_VOTE for r in results) == 7
        assert opened.stats()['prevented_double_votes'] == 7
        assert opened.verify_integrity()

    def test_scopes_accept_in_parallel(self, opened, generator, voter):
        jobs = [(generator.derive(voter, pid, 1), pid) for pid in ("p1", "p2")]
        with ThreadPoolExecutor(max_workers=2) as executor:
            results = list(executor.map(lambda job: opened.submit(*job), jobs))
        assert all(r.accepted for r in results)
        assert opened.verify_integrity()

    def test_audit_during_cross_scope_submits(self, ledger, generator, voter, caplog):
        proposals = [f"q{i}" for i in range(24)]
        for proposal_id in proposals:
            ledger.open_proposal(proposal_id)
        jobs = [(generator.derive(voter, pid, 1), pid) for pid in proposals]

        done = threading.Event()
        audits = []

        def audit():
            while True:
                audits.append(ledger.verify_integrity())
                if done.is_set():
                    break

        auditor = threading.Thread(target=audit)
        with caplog.at_level(logging.CRITICAL, logger="registry.ledger"):
            auditor.start()
            try:
                with ThreadPoolExecutor(max_workers=8) as executor:
                    results = list(executor.map(lambda job: ledger.submit(*job), jobs))
            finally:
                done.set()
                auditor.join()

        assert all(r.accepted for r in results)
        assert audits and all(audits)
        assert "integrity violation" not in caplog.text
        assert ledger.verify_integrity(strict=True)


class TestIntegrity:

    def test_clean_ledger_verifies(self, opened, bundle):
        assert opened.verify_integrity()
        opened.submit(bundle, "p1")
        assert opened.verify_integrity(strict=True)

    def test_out_of_band_entry_removal(self, opened, bundle, caplog):
        opened.submit(bundle, "p1")
        opened._scopes["p1"].entries.clear()

        with caplog.at_level(logging.CRITICAL, logger="registry.ledger"):
            assert not opened.verify_integrity()
        assert "integrity violation" in caplog.text

        with pytest.raises(IntegrityViolation) as exc_info:
            opened.verify_integrity(strict=True)
        assert exc_info.value.code == ErrorCode.INTEGRITY_VIOLATION

    def test_out_of_band_digest_change(self, opened, bundle):
        opened.submit(bundle, "p1")
        opened._scopes["p2"].digest = bytes(32)
        assert not opened.verify_integrity()

    def test_out_of_band_entry_swap(self, opened, bundle):
        opened.submit(bundle, "p1")
        scope = opened._scopes["p1"]
        scope.entries[0] = replace(scope.entries[0], nullifier=bytes(32))
        assert not opened.verify_integrity()

    def test_digest_is_read_only(self, opened, bundle):
        opened.submit(bundle, "p1")
        first = opened.digest()
        opened.verify_integrity()
        assert opened.digest() == first


class TestQueries:

    def test_status_by_credential_and_nullifier(self, opened, bundle, voter):
        assert opened.status("p1", credential=voter) == VoteStatus.CAN_VOTE
        opened.submit(bundle, "p1")
        assert opened.status("p1", credential=voter) == VoteStatus.ALREADY_VOTED
        assert opened.status("p1", nullifier=bundle.nullifier) == VoteStatus.ALREADY_VOTED
        assert opened.status("p2", credential=voter) == VoteStatus.CAN_VOTE

    def test_status_needs_an_identifier(self, opened):
        with pytest.raises(ValidationError) as exc_info:
            opened.status("p1")
        assert exc_info.value.code == ErrorCode.MISSING_PARAMETER

    def test_status_of_unopened_scope(self, ledger, voter):
        with pytest.raises(UnknownProposalError):
            ledger.status("p9", credential=voter)

    def test_entries_are_public_records(self, opened, bundle, clock):
        clock.advance(5)
        opened.submit(bundle, "p1")
        entry = opened.entries("p1")[0]
        assert entry.nullifier == bundle.nullifier
        assert entry.vote_commitment == bundle.vote_commitment
        assert entry.accepted_at == clock.now
        assert entry.position == 0
        assert entry.to_dict()['proposal_id'] == "p1"

    def test_tally_aggregates_commitments(self, opened, generator, issuer, registry):
        voters = []
        for _ in range(3):
            credential = issuer.issue()
            registry.register(credential.commitment)
            voters.append(credential)
        opened.open_proposal("p3")
        for credential, choice in zip(voters, (1, 0, 1)):
            membership = registry.membership_proof(registry.index_of(credential.commitment))
            assert opened.submit(generator.derive(credential, "p3", choice, membership),
                                 "p3").accepted

        tally = opened.tally("p3")
        assert tally.accepted_count == 3
        assert tally.aggregate_commitment != INFINITY_BYTES

    def test_empty_tally(self, opened):
        tally = opened.tally("p1")
        assert tally.accepted_count == 0
        assert tally.aggregate_commitment == INFINITY_BYTES

    def test_stats_count_outcomes(self, opened, bundle):
        opened.submit(bundle, "p1")
        opened.submit(bundle, "p1")
        opened.submit(replace(bundle, nonce=bytes(32)), "p1")
        stats = opened.stats()
        assert stats['total_votes'] == 1
        assert stats['prevented_double_votes'] == 1
        assert stats['rejected_invalid_proofs'] == 1
        assert stats['open_proposals'] == 2

    def test_reset_keeps_scopes_open(self, opened, bundle):
        empty_digest = opened.digest()
        opened.submit(bundle, "p1")
        opened.reset()
        assert opened.digest() == empty_digest
        assert opened.entries("p1") == []
        assert opened.submit(bundle, "p1").accepted

    def test_snapshot_is_json_ready(self, opened, bundle):
        opened.submit(bundle, "p1")
        snapshot = opened.snapshot()
        assert snapshot['digest'] == opened.digest().hex()
        assert snapshot['proposals']['p1']['entries'][0]['nullifier'] == bundle.nullifier.hex()
        assert snapshot['stats']['total_votes'] == 1

    def test_submissions_are_monitored(self, verifier, registry, ledger_config,
                                       clock, bundle):
        monitor = PerformanceMonitor()
        ledger = NullifierLedger(verifier, registry, ledger_config,
                                 monitor=monitor, clock=clock)
        ledger.open_proposal("p1")
        ledger.submit(bundle, "p1")
        ledger.submit(bundle, "p1")
        summary = monitor.get_summary()
        assert summary['operations']['submit']['count'] == 2
