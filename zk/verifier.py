"""
Stateless verification of nullifier proof bundles
"""

import logging
from enum import Enum
from typing import Callable, Optional

from config.config import ProofConfig
from utils.utils import now_ms

from .exceptions import ValidationError, VerificationFailure
from .nullifier import validate_proposal_id
from .zk_proofs import (
    DIGEST_BYTES,
    NullifierProofBundle,
    ProofBackend,
    PublicStatement,
    get_backend,
)

logger = logging.getLogger(__name__)


class VerificationStage(Enum):
    STRUCTURE = "structure"
    FRESHNESS = "freshness"
    RANGE = "range"
    MEMBERSHIP = "membership"
    NULLIFIER = "nullifier"


class ProofVerifier:
    """Pure check of a bundle against a proposal and an eligibility root"""

    def __init__(self, config: Optional[ProofConfig] = None,
                 backend: Optional[ProofBackend] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.config = config or ProofConfig()
        self.backend = backend or get_backend(self.config.backend)
        self.clock = clock or now_ms

    @property
    def max_skew_ms(self) -> int:
        return self.config.max_skew_ms

    def _well_formed(self, bundle, proposal_id, eligibility_root) -> bool:
        if not isinstance(bundle, NullifierProofBundle):
            return False
        for name in NullifierProofBundle.DIGEST_FIELDS:
            value = getattr(bundle, name)
            if not isinstance(value, bytes) or len(value) != DIGEST_BYTES:
                return False
        if isinstance(bundle.timestamp, bool) or not isinstance(bundle.timestamp, int):
            return False
        if bundle.timestamp <= 0:
            return False
        if not isinstance(eligibility_root, bytes) or len(eligibility_root) != DIGEST_BYTES:
            return False
        try:
            validate_proposal_id(proposal_id, self.config.max_proposal_id_length,
                                 self.config.proposal_id_pattern)
        except ValidationError:
            return False
        return True

    def check(self, bundle: NullifierProofBundle, proposal_id: str,
              eligibility_root: bytes) -> Optional[VerificationStage]:
        """First failing stage, or None when the bundle is acceptable"""
        if not self._well_formed(bundle, proposal_id, eligibility_root):
            return VerificationStage.STRUCTURE

        if abs(int(self.clock()) - bundle.timestamp) > self.max_skew_ms:
            return VerificationStage.FRESHNESS

        statement = PublicStatement.for_bundle(bundle, proposal_id, eligibility_root)

        if not self.backend.verify_range(statement, bundle.range_proof):
            return VerificationStage.RANGE
        if not self.backend.verify_membership(statement, bundle.membership_proof):
            return VerificationStage.MEMBERSHIP
        if not self.backend.verify_nullifier(statement, bundle.nullifier_proof,
                                             bundle.range_proof,
                                             bundle.membership_proof):
            return VerificationStage.NULLIFIER
        return None

    def verify(self, bundle: NullifierProofBundle, proposal_id: str,
               eligibility_root: bytes) -> bool:
        stage = self.check(bundle, proposal_id, eligibility_root)
        if stage is not None:
            logger.debug(f"Bundle rejected at {stage.value} check")
            return False
        return True

    def require(self, bundle: NullifierProofBundle, proposal_id: str,
                eligibility_root: bytes):
        """Raise VerificationFailure instead of returning False"""
        stage = self.check(bundle, proposal_id, eligibility_root)
        if stage is not None:
            raise VerificationFailure(f"Proof bundle failed the {stage.value} check")
