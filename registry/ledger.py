"""
Nullifier ledger: at-most-once vote acceptance per proposal scope.

Each proposal is a scope bound to one eligibility root. A scope keeps its
accepted nullifiers in insertion order, a set for membership checks and a
Merkle accumulator whose root is the scope digest. The check for a seen
nullifier and the insert happen under the scope lock; proof verification
runs before the lock is taken so slow bundles never block a scope.

Lock order is scope lock, then the scope table lock. The ledger digest is
republished before a scope lock is released, so holding every scope lock
gives a view where the ledger digest matches the scope digests.
"""

import logging
import threading
from contextlib import ExitStack, nullcontext
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from cryptography.hazmat.primitives import constant_time

from config.config import LedgerConfig
from utils.utils import PerformanceMonitor, now_ms
from zk.credentials import VoterCredential
from zk.exceptions import ErrorCode, IntegrityViolation, UnknownProposalError, ValidationError
from zk.merkle import MerkleAccumulator
from zk.nullifier import validate_proposal_id
from zk.pedersen import add_commitments
from zk.poseidon import hash_bytes
from zk.verifier import ProofVerifier
from zk.zk_proofs import DIGEST_BYTES, NullifierProofBundle, derive_nullifier

from .eligibility import EligibilityRegistry

logger = logging.getLogger(__name__)

LEDGER_TREE_DOMAIN = "ledger_v1"
LEDGER_DIGEST_DOMAIN = "ledger_digest_v1"


class RejectionReason(Enum):
    INVALID_PROOF = "invalid-proof"
    DOUBLE_VOTE = "double-vote"


class VoteStatus(Enum):
    CAN_VOTE = "can-vote"
    ALREADY_VOTED = "already-voted"


@dataclass(frozen=True)
class LedgerEntry:
    nullifier: bytes
    proposal_id: str
    accepted_at: int
    vote_commitment: bytes
    position: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nullifier': self.nullifier.hex(),
            'proposal_id': self.proposal_id,
            'accepted_at': self.accepted_at,
            'vote_commitment': self.vote_commitment.hex(),
            'position': self.position,
        }


@dataclass(frozen=True)
class SubmissionResult:
    accepted: bool
    reason: Optional[RejectionReason]
    digest: bytes  # scope digest after the decision

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accepted': self.accepted,
            'reason': self.reason.value if self.reason else None,
            'digest': self.digest.hex(),
        }


@dataclass(frozen=True)
class TallySnapshot:
    proposal_id: str
    accepted_count: int
    aggregate_commitment: bytes  # commits to the number of yes votes


@dataclass
class _ProposalScope:
    proposal_id: str
    eligibility_root: bytes
    opened_at: int
    accumulator: MerkleAccumulator
    digest: bytes = b""
    entries: List[LedgerEntry] = field(default_factory=list)
    nullifiers: Set[bytes] = field(default_factory=set)
    prevented_double_votes: int = 0
    rejected_invalid_proofs: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self):
        self.digest = self.accumulator.root


class NullifierLedger:
    """Append-only store of accepted nullifiers, one scope per proposal"""

    def __init__(self, verifier: Optional[ProofVerifier] = None,
                 registry: Optional[EligibilityRegistry] = None,
                 config: Optional[LedgerConfig] = None,
                 monitor: Optional[PerformanceMonitor] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.verifier = verifier or ProofVerifier()
        self.registry = registry
        self.config = config or LedgerConfig()
        self.monitor = monitor
        self.clock = clock or now_ms

        self._scopes: Dict[str, _ProposalScope] = {}
        self._scopes_lock = threading.Lock()
        self._digest = self._compute_ledger_digest([])

    def _validate_proposal_id(self, proposal_id: str) -> str:
        proof_config = self.verifier.config
        return validate_proposal_id(proposal_id,
                                    proof_config.max_proposal_id_length,
                                    proof_config.proposal_id_pattern)

    def _new_accumulator(self) -> MerkleAccumulator:
        return MerkleAccumulator(self.config.ledger_tree_depth,
                                 domain=LEDGER_TREE_DOMAIN)

    def _scope(self, proposal_id: str) -> _ProposalScope:
        with self._scopes_lock:
            scope = self._scopes.get(proposal_id)
        if scope is None:
            raise UnknownProposalError(f"Proposal {proposal_id!r} is not open")
        return scope

    def _sorted_scopes(self) -> List[_ProposalScope]:
        with self._scopes_lock:
            return [self._scopes[pid] for pid in sorted(self._scopes)]

    @staticmethod
    def _compute_ledger_digest(scope_digests) -> bytes:
        """Sponge over (proposal_id, scope digest) pairs in proposal-id order"""
        parts = []
        for proposal_id, scope_digest in sorted(scope_digests):
            parts.append(proposal_id.encode('utf-8'))
            parts.append(scope_digest)
        return hash_bytes(LEDGER_DIGEST_DOMAIN, *parts)

    def _refresh_ledger_digest(self):
        # caller holds _scopes_lock
        pairs = [(pid, scope.digest) for pid, scope in self._scopes.items()]
        self._digest = self._compute_ledger_digest(pairs)

    def _publish_ledger_digest(self):
        with self._scopes_lock:
            self._refresh_ledger_digest()

    def _consistent_view(self):
        """Copies of every scope's state and the ledger digest taken at one instant"""
        while True:
            scopes = self._sorted_scopes()
            with ExitStack() as stack:
                for scope in scopes:
                    stack.enter_context(scope.lock)
                with self._scopes_lock:
                    if len(self._scopes) != len(scopes):
                        continue  # a proposal was opened meanwhile
                    ledger_digest = self._digest
                views = [(scope.proposal_id, scope.digest, list(scope.entries),
                          set(scope.nullifiers)) for scope in scopes]
            return views, ledger_digest

    def open_proposal(self, proposal_id: str,
                      eligibility_root: Optional[bytes] = None) -> bytes:
        """Bind a proposal scope to an eligibility root and return that root

        Without an explicit root the registry's current root is snapshotted.
        Reopening with the same root is a no-op.
        """
        self._validate_proposal_id(proposal_id)
        if eligibility_root is None:
            if self.registry is None:
                raise ValidationError(
                    "An eligibility root is required when no registry is attached",
                    ErrorCode.MISSING_PARAMETER)
            eligibility_root = self.registry.root
        if not isinstance(eligibility_root, bytes) or len(eligibility_root) != DIGEST_BYTES:
            raise ValidationError("Eligibility root must be 32 bytes",
                                  ErrorCode.TYPE_MISMATCH)

        with self._scopes_lock:
            existing = self._scopes.get(proposal_id)
            if existing is not None:
                if existing.eligibility_root != eligibility_root:
                    raise ValidationError(
                        f"Proposal {proposal_id!r} is already bound to another root",
                        ErrorCode.INVALID_PROPOSAL)
                return existing.eligibility_root

            self._scopes[proposal_id] = _ProposalScope(
                proposal_id=proposal_id,
                eligibility_root=eligibility_root,
                opened_at=int(self.clock()),
                accumulator=self._new_accumulator(),
            )
            self._refresh_ledger_digest()

        logger.info(f"Opened proposal {proposal_id} against root "
                    f"{eligibility_root.hex()[:16]}...")
        return eligibility_root

    def is_open(self, proposal_id: str) -> bool:
        with self._scopes_lock:
            return proposal_id in self._scopes

    @property
    def proposals(self) -> List[str]:
        with self._scopes_lock:
            return sorted(self._scopes)

    def eligibility_root(self, proposal_id: str) -> bytes:
        return self._scope(proposal_id).eligibility_root

    def submit(self, bundle: NullifierProofBundle, proposal_id: str) -> SubmissionResult:
        """Verify a bundle, then atomically check and record its nullifier"""
        self._validate_proposal_id(proposal_id)
        scope = self._scope(proposal_id)

        operation = (self.monitor.start_operation("submit")
                     if self.monitor else nullcontext())
        with operation:
            if not self.verifier.verify(bundle, proposal_id, scope.eligibility_root):
                with scope.lock:
                    scope.rejected_invalid_proofs += 1
                    digest = scope.digest
                logger.warning(f"Rejected invalid proof for {proposal_id}")
                return SubmissionResult(False, RejectionReason.INVALID_PROOF, digest)

            with scope.lock:
                if bundle.nullifier in scope.nullifiers:
                    scope.prevented_double_votes += 1
                    logger.warning(
                        f"Double vote prevented on {proposal_id}: "
                        f"{bundle.nullifier.hex()[:16]}...")
                    return SubmissionResult(False, RejectionReason.DOUBLE_VOTE,
                                            scope.digest)

                position = scope.accumulator.append(bundle.nullifier)
                scope.entries.append(LedgerEntry(
                    nullifier=bundle.nullifier,
                    proposal_id=proposal_id,
                    accepted_at=int(self.clock()),
                    vote_commitment=bundle.vote_commitment,
                    position=position,
                ))
                scope.nullifiers.add(bundle.nullifier)
                scope.digest = scope.accumulator.root
                digest = scope.digest
                self._publish_ledger_digest()

        logger.info(f"Accepted vote #{position} on {proposal_id}, "
                    f"digest {digest.hex()[:16]}...")
        return SubmissionResult(True, None, digest)

    def status(self, proposal_id: str, nullifier: Optional[bytes] = None,
               credential: Optional[VoterCredential] = None) -> VoteStatus:
        """Whether a voter may still vote; the nullifier is never returned"""
        self._validate_proposal_id(proposal_id)
        if credential is not None:
            nullifier = derive_nullifier(credential.secret, proposal_id)
        if nullifier is None:
            raise ValidationError("Either a nullifier or a credential is required",
                                  ErrorCode.MISSING_PARAMETER)

        scope = self._scope(proposal_id)
        with scope.lock:
            seen = nullifier in scope.nullifiers
        return VoteStatus.ALREADY_VOTED if seen else VoteStatus.CAN_VOTE

    def scope_digest(self, proposal_id: str) -> bytes:
        scope = self._scope(proposal_id)
        with scope.lock:
            return scope.digest

    def digest(self) -> bytes:
        """Ledger-wide digest over every scope digest"""
        with self._scopes_lock:
            return self._digest

    def entries(self, proposal_id: str) -> List[LedgerEntry]:
        scope = self._scope(proposal_id)
        with scope.lock:
            return list(scope.entries)

    def verify_integrity(self, strict: bool = False) -> bool:
        """Rebuild every digest from stored entries and compare with the published ones"""
        problems = []
        pairs = []
        views, published_ledger_digest = self._consistent_view()
        for proposal_id, published, entries, indexed in views:
            nullifiers = [entry.nullifier for entry in entries]
            positions = [entry.position for entry in entries]

            rebuilt = MerkleAccumulator.from_leaves(
                nullifiers, self.config.ledger_tree_depth, LEDGER_TREE_DOMAIN).root

            if not constant_time.bytes_eq(rebuilt, published):
                problems.append(f"digest mismatch in {proposal_id}")
            if len(indexed) != len(nullifiers) or indexed != set(nullifiers):
                problems.append(f"nullifier index diverged in {proposal_id}")
            if positions != list(range(len(positions))):
                problems.append(f"entry positions out of order in {proposal_id}")
            pairs.append((proposal_id, rebuilt))

        if not constant_time.bytes_eq(self._compute_ledger_digest(pairs),
                                      published_ledger_digest):
            problems.append("ledger digest mismatch")

        if problems:
            for problem in problems:
                logger.critical(f"Ledger integrity violation: {problem}")
            if strict:
                raise IntegrityViolation("; ".join(problems))
            return False
        return True

    def tally(self, proposal_id: str) -> TallySnapshot:
        """Homomorphic sum of accepted vote commitments for one proposal"""
        entries = self.entries(proposal_id)
        return TallySnapshot(
            proposal_id=proposal_id,
            accepted_count=len(entries),
            aggregate_commitment=add_commitments(e.vote_commitment for e in entries),
        )

    def stats(self) -> Dict[str, Any]:
        votes_per_proposal = {}
        prevented = 0
        rejected = 0
        for scope in self._sorted_scopes():
            with scope.lock:
                votes_per_proposal[scope.proposal_id] = len(scope.entries)
                prevented += scope.prevented_double_votes
                rejected += scope.rejected_invalid_proofs

        return {
            'total_votes': sum(votes_per_proposal.values()),
            'open_proposals': len(votes_per_proposal),
            'votes_per_proposal': votes_per_proposal,
            'prevented_double_votes': prevented,
            'rejected_invalid_proofs': rejected,
        }

    def reset(self):
        """Drop every accepted entry; scopes stay open. Test and demo use only."""
        logger.warning("Resetting nullifier ledger")
        for scope in self._sorted_scopes():
            with scope.lock:
                scope.accumulator = self._new_accumulator()
                scope.entries.clear()
                scope.nullifiers.clear()
                scope.prevented_double_votes = 0
                scope.rejected_invalid_proofs = 0
                scope.digest = scope.accumulator.root
                self._publish_ledger_digest()

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready export for external audit"""
        proposals = {}
        for scope in self._sorted_scopes():
            with scope.lock:
                proposals[scope.proposal_id] = {
                    'eligibility_root': scope.eligibility_root.hex(),
                    'opened_at': scope.opened_at,
                    'digest': scope.digest.hex(),
                    'entries': [entry.to_dict() for entry in scope.entries],
                }

        return {
            'digest': self.digest().hex(),
            'proposals': proposals,
            'stats': self.stats(),
        }
