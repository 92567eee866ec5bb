"""
Nullifier proof bundles and the pluggable proof backend.

A bundle carries a nullifier plus three proofs (nullifier correctness, vote
range, eligibility membership) bound to a fresh nonce and timestamp. The
proof system itself sits behind ``ProofBackend``; ``TranscriptProofBackend``
is the default and produces Fiat-Shamir style Poseidon transcripts over the
public statement. It binds every public field (any altered byte breaks the
transcript) but a prover holding only public data could recompute it, so a
SNARK backend is what provides soundness in a hostile deployment.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from typing import Any, Dict

from cryptography.hazmat.primitives import constant_time

from .exceptions import ErrorCode, ValidationError
from .merkle import MembershipProof, verify_path
from .pedersen import INFINITY_BYTES, is_valid_point, open_commitment
from .poseidon import hash_bytes

logger = logging.getLogger(__name__)

DIGEST_BYTES = 32
TIMESTAMP_BYTES = 8

# Sponge domains
NULLIFIER_DOMAIN = "nullifier_v1"
RANGE_PROOF_DOMAIN = "range_proof_v1"
MEMBERSHIP_PROOF_DOMAIN = "membership_proof_v1"
NULLIFIER_PROOF_DOMAIN = "nullifier_proof_v1"
ELIGIBILITY_TREE_DOMAIN = "eligibility_tree_v1"


@dataclass(frozen=True)
class NullifierProofBundle:
    """Everything a voter submits for one vote on one proposal"""
    nullifier: bytes
    nullifier_proof: bytes
    vote_commitment: bytes
    range_proof: bytes
    membership_proof: bytes
    timestamp: int  # milliseconds since the epoch
    nonce: bytes

    DIGEST_FIELDS = ('nullifier', 'nullifier_proof', 'vote_commitment',
                     'range_proof', 'membership_proof', 'nonce')

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = value.hex() if isinstance(value, bytes) else value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NullifierProofBundle':
        try:
            kwargs = {name: bytes.fromhex(data[name])
                      for name in cls.DIGEST_FIELDS}
            kwargs['timestamp'] = int(data['timestamp'])
        except (KeyError, ValueError, TypeError) as e:
            raise ValidationError(f"Malformed proof bundle: {e}",
                                  ErrorCode.TYPE_MISMATCH) from e
        return cls(**kwargs)


@dataclass(frozen=True)
class PublicStatement:
    """Public inputs every proof in a bundle is bound to"""
    proposal_id: str
    nullifier: bytes
    vote_commitment: bytes
    nonce: bytes
    timestamp: int
    eligibility_root: bytes

    @classmethod
    def for_bundle(cls, bundle: NullifierProofBundle, proposal_id: str,
                   eligibility_root: bytes) -> 'PublicStatement':
        return cls(
            proposal_id=proposal_id,
            nullifier=bundle.nullifier,
            vote_commitment=bundle.vote_commitment,
            nonce=bundle.nonce,
            timestamp=bundle.timestamp,
            eligibility_root=eligibility_root,
        )

    def timestamp_bytes(self) -> bytes:
        return int(self.timestamp).to_bytes(TIMESTAMP_BYTES, 'big')


def derive_nullifier(secret: bytes, proposal_id: str) -> bytes:
    """Deterministic per-(voter, proposal) pseudonym: H(secret, proposal_id)"""
    return hash_bytes(NULLIFIER_DOMAIN, secret, proposal_id.encode('utf-8'))


class ProofBackend(ABC):
    """Proof system used to attest range, membership and nullifier correctness"""

    name = "abstract"
    sound = True

    @abstractmethod
    def prove_range(self, statement: PublicStatement, vote_choice: int,
                    blinding: int) -> bytes:
        """Attest the committed vote is 0 or 1"""

    @abstractmethod
    def verify_range(self, statement: PublicStatement, range_proof: bytes) -> bool:
        pass

    @abstractmethod
    def prove_membership(self, statement: PublicStatement, commitment: bytes,
                         membership: MembershipProof) -> bytes:
        """Attest the voter commitment is a leaf under the eligibility root"""

    @abstractmethod
    def verify_membership(self, statement: PublicStatement,
                          membership_proof: bytes) -> bool:
        pass

    @abstractmethod
    def prove_nullifier(self, statement: PublicStatement, secret: bytes,
                        range_proof: bytes, membership_proof: bytes) -> bytes:
        """Attest the nullifier was derived from the same hidden secret"""

    @abstractmethod
    def verify_nullifier(self, statement: PublicStatement, nullifier_proof: bytes,
                         range_proof: bytes, membership_proof: bytes) -> bool:
        pass


class TranscriptProofBackend(ProofBackend):
    """Poseidon transcript proofs; the prover checks its witness before attesting"""

    name = "poseidon-transcript"
    sound = False  # verifiable from public data alone

    def _range_transcript(self, statement: PublicStatement) -> bytes:
        return hash_bytes(RANGE_PROOF_DOMAIN, statement.vote_commitment,
                          statement.nonce, statement.timestamp_bytes())

    def _membership_transcript(self, statement: PublicStatement) -> bytes:
        return hash_bytes(MEMBERSHIP_PROOF_DOMAIN, statement.eligibility_root,
                          statement.nullifier, statement.nonce,
                          statement.timestamp_bytes())

    def _nullifier_transcript(self, statement: PublicStatement, range_proof: bytes,
                              membership_proof: bytes) -> bytes:
        return hash_bytes(NULLIFIER_PROOF_DOMAIN, statement.nullifier,
                          statement.proposal_id.encode('utf-8'),
                          statement.vote_commitment, range_proof,
                          membership_proof, statement.nonce,
                          statement.timestamp_bytes())

    def prove_range(self, statement: PublicStatement, vote_choice: int,
                    blinding: int) -> bytes:
        if vote_choice not in (0, 1):
            raise ValidationError("Vote choice must be 0 or 1",
                                  ErrorCode.INVALID_VOTE_CHOICE)
        if not open_commitment(statement.vote_commitment, vote_choice, blinding):
            raise ValidationError("Vote commitment does not open to the vote",
                                  ErrorCode.INVALID_COMMITMENT)
        return self._range_transcript(statement)

    def verify_range(self, statement: PublicStatement, range_proof: bytes) -> bool:
        if statement.vote_commitment == INFINITY_BYTES:
            return False
        if not is_valid_point(statement.vote_commitment):
            return False
        return constant_time.bytes_eq(self._range_transcript(statement), range_proof)

    def prove_membership(self, statement: PublicStatement, commitment: bytes,
                         membership: MembershipProof) -> bytes:
        if not verify_path(commitment, membership, statement.eligibility_root,
                           ELIGIBILITY_TREE_DOMAIN):
            raise ValidationError(
                "Membership path does not reproduce the eligibility root",
                ErrorCode.VOTER_NOT_ELIGIBLE)
        return self._membership_transcript(statement)

    def verify_membership(self, statement: PublicStatement,
                          membership_proof: bytes) -> bool:
        return constant_time.bytes_eq(
            self._membership_transcript(statement), membership_proof)

    def prove_nullifier(self, statement: PublicStatement, secret: bytes,
                        range_proof: bytes, membership_proof: bytes) -> bytes:
        expected = derive_nullifier(secret, statement.proposal_id)
        if not constant_time.bytes_eq(expected, statement.nullifier):
            raise ValidationError("Nullifier does not match the voter secret",
                                  ErrorCode.INVALID_NULLIFIER)
        return self._nullifier_transcript(statement, range_proof, membership_proof)

    def verify_nullifier(self, statement: PublicStatement, nullifier_proof: bytes,
                         range_proof: bytes, membership_proof: bytes) -> bool:
        expected = self._nullifier_transcript(
            statement, range_proof, membership_proof)
        return constant_time.bytes_eq(expected, nullifier_proof)


PROOF_BACKENDS = {
    TranscriptProofBackend.name: TranscriptProofBackend,
}


def get_backend(name: str) -> ProofBackend:
    try:
        return PROOF_BACKENDS[name]()
    except KeyError:
        raise ValidationError(f"Unknown proof backend {name!r}",
                              ErrorCode.INVALID_INPUT) from None
