"""
Zero-Knowledge Module for the Nullifier Ledger
Credentials, Pedersen commitments, Poseidon hashing, Merkle membership and nullifier proofs
"""

from .credentials import CredentialIssuer, VoterCredential
from .exceptions import (
    EntropyError,
    ErrorCode,
    IntegrityViolation,
    NullifierError,
    RegistrationError,
    UnknownProposalError,
    ValidationError,
    VerificationFailure,
)
from .merkle import MembershipProof, MerkleAccumulator
from .nullifier import NullifierGenerator, validate_proposal_id, validate_vote_choice
from .verifier import ProofVerifier, VerificationStage
from .zk_proofs import (
    NullifierProofBundle,
    ProofBackend,
    PublicStatement,
    TranscriptProofBackend,
    derive_nullifier,
    get_backend,
)

__version__ = "1.0.0"

__all__ = [
    # Classes
    'CredentialIssuer',
    'VoterCredential',
    'MembershipProof',
    'MerkleAccumulator',
    'NullifierGenerator',
    'NullifierProofBundle',
    'ProofBackend',
    'ProofVerifier',
    'PublicStatement',
    'TranscriptProofBackend',
    'VerificationStage',

    # Functions
    'derive_nullifier',
    'get_backend',
    'validate_proposal_id',
    'validate_vote_choice',

    # Exceptions
    'EntropyError',
    'ErrorCode',
    'IntegrityViolation',
    'NullifierError',
    'RegistrationError',
    'UnknownProposalError',
    'ValidationError',
    'VerificationFailure',
]
