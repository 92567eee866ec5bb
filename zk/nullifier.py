"""
Nullifier derivation and proof bundle generation
"""

import logging
import re
from typing import Callable, Optional

from config.config import ProofConfig
from utils.utils import now_ms

from .credentials import VoterCredential
from .exceptions import ErrorCode, ValidationError
from .merkle import MembershipProof
from .pedersen import commit, random_scalar, secure_random_bytes
from .zk_proofs import (
    NullifierProofBundle,
    ProofBackend,
    PublicStatement,
    derive_nullifier,
    get_backend,
)

logger = logging.getLogger(__name__)

NONCE_BYTES = 32


def validate_proposal_id(proposal_id: str, max_length: int = 64,
                         pattern: str = r"^[A-Za-z0-9_-]+$") -> str:
    if not isinstance(proposal_id, str):
        raise ValidationError(
            f"Proposal id must be a string, got {type(proposal_id).__name__}",
            ErrorCode.TYPE_MISMATCH)
    if not proposal_id:
        raise ValidationError("Proposal id must not be empty",
                              ErrorCode.INVALID_PROPOSAL)
    if len(proposal_id) > max_length:
        raise ValidationError(
            f"Proposal id longer than {max_length} characters",
            ErrorCode.INVALID_PROPOSAL)
    if not re.fullmatch(pattern, proposal_id):
        raise ValidationError(
            f"Proposal id {proposal_id!r} contains invalid characters",
            ErrorCode.INVALID_PROPOSAL)
    return proposal_id


def validate_vote_choice(vote_choice: int) -> int:
    # bool is an int subclass; True must not pass as a vote
    if isinstance(vote_choice, bool) or not isinstance(vote_choice, int):
        raise ValidationError(
            f"Vote choice must be an integer, got {type(vote_choice).__name__}",
            ErrorCode.INVALID_VOTE_CHOICE)
    if vote_choice not in (0, 1):
        raise ValidationError(f"Vote choice must be 0 or 1, got {vote_choice}",
                              ErrorCode.INVALID_VOTE_CHOICE)
    return vote_choice


class NullifierGenerator:
    """Builds a fresh proof bundle for one vote by one credential holder"""

    def __init__(self, config: Optional[ProofConfig] = None,
                 backend: Optional[ProofBackend] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.config = config or ProofConfig()
        self.backend = backend or get_backend(self.config.backend)
        self.clock = clock or now_ms

    def derive(self, credential: VoterCredential, proposal_id: str,
               vote_choice: int,
               membership: Optional[MembershipProof] = None) -> NullifierProofBundle:
        """Nullifier plus nullifier, range and membership proofs for one vote

        Inputs are validated before any randomness is drawn. The nullifier is
        deterministic in (secret, proposal_id); nonce, timestamp and vote
        blinding are fresh on every call.
        """
        validate_proposal_id(proposal_id, self.config.max_proposal_id_length,
                             self.config.proposal_id_pattern)
        validate_vote_choice(vote_choice)

        membership = membership or credential.membership
        if membership is None:
            raise ValidationError(
                "Credential carries no eligibility membership path",
                ErrorCode.VOTER_NOT_ELIGIBLE)

        nonce = secure_random_bytes(NONCE_BYTES)
        timestamp = int(self.clock())

        nullifier = derive_nullifier(credential.secret, proposal_id)
        vote_blinding = random_scalar()
        vote_commitment = commit(vote_choice, vote_blinding)

        statement = PublicStatement(
            proposal_id=proposal_id,
            nullifier=nullifier,
            vote_commitment=vote_commitment,
            nonce=nonce,
            timestamp=timestamp,
            eligibility_root=membership.root,
        )

        range_proof = self.backend.prove_range(statement, vote_choice, vote_blinding)
        membership_proof = self.backend.prove_membership(
            statement, credential.commitment, membership)
        nullifier_proof = self.backend.prove_nullifier(
            statement, credential.secret, range_proof, membership_proof)

        logger.debug(f"Derived nullifier {nullifier.hex()[:16]}... for {proposal_id}")

        return NullifierProofBundle(
            nullifier=nullifier,
            nullifier_proof=nullifier_proof,
            vote_commitment=vote_commitment,
            range_proof=range_proof,
            membership_proof=membership_proof,
            timestamp=timestamp,
            nonce=nonce,
        )
