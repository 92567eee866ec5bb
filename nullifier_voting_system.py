#!/usr/bin/env python3
"""
Nullifier Voting System
=======================
Wires credential issuance, eligibility registration, nullifier proofs and
the nullifier ledger into one object. Every component can be injected;
nothing is shared between instances.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config.config import SystemConfig
from registry.batching import BatchResult, BatchSubmitter
from registry.eligibility import EligibilityRegistry
from registry.ledger import NullifierLedger, SubmissionResult, TallySnapshot, VoteStatus
from utils.utils import PerformanceMonitor, now_ms, save_results
from zk.credentials import CredentialIssuer, VoterCredential
from zk.exceptions import ErrorCode, ValidationError
from zk.merkle import MembershipProof
from zk.nullifier import NullifierGenerator
from zk.verifier import ProofVerifier
from zk.zk_proofs import NullifierProofBundle, get_backend

logger = logging.getLogger(__name__)


class NullifierVotingSystem:
    """
    Privacy-preserving yes/no voting with at-most-once guarantees:
    1. Issuer: fresh voter credentials
    2. Registry: eligibility Merkle tree over voter commitments
    3. Generator/Verifier: nullifier proof bundles
    4. Ledger: atomic check-and-insert per proposal with audit digests
    """

    def __init__(self, config: Optional[SystemConfig] = None,
                 issuer: Optional[CredentialIssuer] = None,
                 registry: Optional[EligibilityRegistry] = None,
                 generator: Optional[NullifierGenerator] = None,
                 verifier: Optional[ProofVerifier] = None,
                 ledger: Optional[NullifierLedger] = None,
                 monitor: Optional[PerformanceMonitor] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.config = config or SystemConfig()
        clock = clock or now_ms
        proof_config = self.config.proof_config
        backend = get_backend(proof_config.backend)

        if monitor is None and self.config.ledger_config.enable_performance_monitoring:
            monitor = PerformanceMonitor()
        self.monitor = monitor

        self.issuer = issuer or CredentialIssuer(clock)
        self.registry = registry or EligibilityRegistry(proof_config, clock=clock)
        self.generator = generator or NullifierGenerator(proof_config, backend, clock)
        self.verifier = verifier or ProofVerifier(proof_config, backend, clock)
        self.ledger = ledger or NullifierLedger(
            self.verifier, self.registry, self.config.ledger_config,
            monitor=self.monitor, clock=clock)
        self.batcher = BatchSubmitter(self.ledger, self.config.ledger_config)

        logger.info("Nullifier voting system ready "
                    f"(backend {backend.name}, tree depth {self.registry.depth})")
        if not backend.sound:
            logger.warning(f"Proof backend {backend.name} binds bundle fields but is "
                           "not a sound zero-knowledge proof system")

    def register_voter(self) -> VoterCredential:
        """Issue a credential and add its commitment to the eligibility tree"""
        credential = self.issuer.issue()
        membership = self.registry.register(credential.commitment)
        return credential.with_membership(membership)

    def open_proposal(self, proposal_id: str,
                      eligibility_root: Optional[bytes] = None) -> bytes:
        return self.ledger.open_proposal(proposal_id, eligibility_root)

    def membership_for(self, credential: VoterCredential,
                       proposal_id: str) -> MembershipProof:
        """A membership path against the root the proposal was opened with"""
        scope_root = self.ledger.eligibility_root(proposal_id)
        if credential.membership is not None and credential.membership.root == scope_root:
            return credential.membership

        index = self.registry.index_of(credential.commitment)
        if index is None:
            raise ValidationError("Voter commitment is not registered",
                                  ErrorCode.VOTER_NOT_ELIGIBLE)
        membership = self.registry.membership_proof(index)
        if membership.root != scope_root:
            raise ValidationError(
                f"Registry has moved past the root proposal {proposal_id!r} "
                "was opened with", ErrorCode.VOTER_NOT_ELIGIBLE)
        return membership

    def prepare_vote(self, credential: VoterCredential, proposal_id: str,
                     vote_choice: int) -> NullifierProofBundle:
        membership = self.membership_for(credential, proposal_id)
        return self.generator.derive(credential, proposal_id, vote_choice, membership)

    def submit(self, bundle: NullifierProofBundle, proposal_id: str) -> SubmissionResult:
        return self.ledger.submit(bundle, proposal_id)

    def cast_vote(self, credential: VoterCredential, proposal_id: str,
                  vote_choice: int) -> SubmissionResult:
        """Build a fresh bundle for the vote and submit it"""
        bundle = self.prepare_vote(credential, proposal_id, vote_choice)
        return self.ledger.submit(bundle, proposal_id)

    async def submit_batch(self, submissions: Sequence[Tuple[NullifierProofBundle, str]]
                           ) -> List[BatchResult]:
        return await self.batcher.submit_many(submissions)

    def status(self, proposal_id: str, credential: VoterCredential) -> VoteStatus:
        return self.ledger.status(proposal_id, credential=credential)

    def tally(self, proposal_id: str) -> TallySnapshot:
        return self.ledger.tally(proposal_id)

    def digest(self) -> bytes:
        return self.ledger.digest()

    def verify_integrity(self, strict: bool = False) -> bool:
        return self.ledger.verify_integrity(strict=strict)

    def get_system_metrics(self) -> Dict[str, Any]:
        metrics = {
            'eligibility': self.registry.stats(),
            'ledger': self.ledger.stats(),
            'digest': self.ledger.digest().hex(),
        }
        if self.monitor is not None:
            metrics['performance'] = self.monitor.get_summary()
        return metrics

    def export_snapshot(self, filepath: Optional[Path] = None) -> Path:
        """Write the ledger snapshot and integrity result under results_dir"""
        if filepath is None:
            filepath = self.config.results_dir / "ledger_snapshot.json"
        filepath = Path(filepath)

        results = self.ledger.snapshot()
        results['eligibility'] = self.registry.stats()
        results['integrity_checks'] = {'ledger_digest': self.ledger.verify_integrity()}
        save_results(results, filepath)
        return filepath
