"""
Voter credential issuance
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from py_ecc.optimized_bn128 import curve_order

from utils.utils import now_ms

from .merkle import MembershipProof
from .pedersen import commit, open_commitment, random_scalar, scalar_base_multiply, secure_random_bytes
from .poseidon import field_to_bytes

logger = logging.getLogger(__name__)

ENTROPY_BYTES = 32


@dataclass(frozen=True)
class VoterCredential:
    """Voter key material; held by the voter and never persisted by the core"""
    secret: bytes = field(repr=False)
    commitment: bytes
    public_key: bytes
    private_key: bytes = field(repr=False)
    blinding: bytes = field(repr=False)
    membership: Optional[MembershipProof] = None
    issued_at: int = field(default_factory=now_ms)

    @property
    def secret_scalar(self) -> int:
        return int.from_bytes(self.secret, 'big')

    @property
    def is_registered(self) -> bool:
        return self.membership is not None

    def with_membership(self, membership: MembershipProof) -> 'VoterCredential':
        """Copy of this credential carrying an eligibility path"""
        return replace(self, membership=membership)

    def verify_commitment(self) -> bool:
        """Check the public commitment opens to this credential's secret"""
        return open_commitment(self.commitment, self.secret_scalar,
                               int.from_bytes(self.blinding, 'big'))


def _derive_scalar(key_material: bytes, info: bytes) -> int:
    """HKDF-SHA256 expanded to 64 bytes, reduced to a non-zero scalar"""
    okm = HKDF(
        algorithm=hashes.SHA256(),
        length=64,
        salt=None,
        info=info,
    ).derive(key_material)
    return int.from_bytes(okm, 'big') % (curve_order - 1) + 1


class CredentialIssuer:
    """Issues fresh, statistically independent voter credentials"""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self.clock = clock or now_ms

    def issue(self) -> VoterCredential:
        entropy = secure_random_bytes(ENTROPY_BYTES)
        additional_entropy = secure_random_bytes(ENTROPY_BYTES)

        private_key = _derive_scalar(entropy, b"voter-private-key")
        public_key = scalar_base_multiply(private_key)

        secret = _derive_scalar(entropy + additional_entropy, b"voter-secret")
        blinding = random_scalar()
        commitment = commit(secret, blinding)

        logger.debug(f"Issued credential with commitment {commitment.hex()[:16]}...")

        return VoterCredential(
            secret=field_to_bytes(secret),
            commitment=commitment,
            public_key=public_key,
            private_key=field_to_bytes(private_key),
            blinding=field_to_bytes(blinding),
            issued_at=int(self.clock()),
        )
