"""
Exception hierarchy for the nullifier voting core
"""

from enum import Enum


class ErrorCode(Enum):
    """Stable error codes surfaced to callers and logs"""
    # Cryptographic
    INVALID_NULLIFIER = "CRYPTO_001"
    PROOF_VERIFICATION_FAILED = "CRYPTO_002"
    INVALID_COMMITMENT = "CRYPTO_003"
    MERKLE_PROOF_INVALID = "CRYPTO_004"
    ENTROPY_UNAVAILABLE = "CRYPTO_005"

    # Voting
    DOUBLE_VOTE_DETECTED = "VOTE_001"
    INVALID_PROPOSAL = "VOTE_002"
    VOTER_NOT_ELIGIBLE = "VOTE_004"
    INVALID_VOTE_CHOICE = "VOTE_005"

    # Validation
    INVALID_INPUT = "VAL_001"
    MISSING_PARAMETER = "VAL_002"
    TYPE_MISMATCH = "VAL_003"

    # System
    INTEGRITY_VIOLATION = "SYS_004"


class NullifierError(Exception):
    """Base exception for nullifier voting operations"""

    default_code = ErrorCode.INVALID_INPUT

    def __init__(self, message: str, code: ErrorCode = None):
        super().__init__(message)
        self.code = code or self.default_code

    def __str__(self):
        return f"[{self.code.value}] {super().__str__()}"


class ValidationError(NullifierError):
    """Malformed input, rejected before any cryptographic work"""
    default_code = ErrorCode.INVALID_INPUT


class UnknownProposalError(ValidationError):
    """Submission for a proposal scope that was never opened"""
    default_code = ErrorCode.INVALID_PROPOSAL


class RegistrationError(NullifierError):
    """Eligibility registration refused"""
    default_code = ErrorCode.INVALID_COMMITMENT


class VerificationFailure(NullifierError):
    """A proof bundle failed one of the verifier checks"""
    default_code = ErrorCode.PROOF_VERIFICATION_FAILED


class IntegrityViolation(NullifierError):
    """Stored ledger state no longer matches its published digest"""
    default_code = ErrorCode.INTEGRITY_VIOLATION


class EntropyError(NullifierError):
    """The OS entropy source is unavailable"""
    default_code = ErrorCode.ENTROPY_UNAVAILABLE
