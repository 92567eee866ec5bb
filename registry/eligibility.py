"""
Eligibility registry: append-only Merkle set of voter commitments
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from config.config import ProofConfig
from utils.utils import now_ms
from zk.exceptions import ErrorCode, RegistrationError, ValidationError
from zk.merkle import MembershipProof, MerkleAccumulator, verify_path
from zk.pedersen import INFINITY_BYTES, POINT_BYTES, decompress_point
from zk.zk_proofs import ELIGIBILITY_TREE_DOMAIN

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EligibilityRegistration:
    commitment: bytes
    index: int
    timestamp: int


class EligibilityRegistry:
    """Voter commitments as leaves of a fixed-depth Poseidon Merkle tree"""

    def __init__(self, config: Optional[ProofConfig] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.config = config or ProofConfig()
        self.clock = clock or now_ms
        self._tree = MerkleAccumulator(self.config.eligibility_tree_depth,
                                       domain=ELIGIBILITY_TREE_DOMAIN)
        self._registrations: List[EligibilityRegistration] = []
        self._index_by_commitment: Dict[bytes, int] = {}
        self._root_history: List[bytes] = [self._tree.root]
        self._lock = threading.Lock()

    @property
    def depth(self) -> int:
        return self._tree.depth

    @property
    def root(self) -> bytes:
        with self._lock:
            return self._tree.root

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._registrations)

    @property
    def registrations(self) -> List[EligibilityRegistration]:
        with self._lock:
            return list(self._registrations)

    @property
    def root_history(self) -> List[bytes]:
        """Every root the registry has published, oldest first"""
        with self._lock:
            return list(self._root_history)

    def _validate_commitment(self, commitment: bytes):
        if not isinstance(commitment, bytes) or len(commitment) != POINT_BYTES:
            raise RegistrationError("Commitment must be 32 bytes",
                                    ErrorCode.INVALID_COMMITMENT)
        if commitment == INFINITY_BYTES:
            raise RegistrationError("Commitment must not be the identity",
                                    ErrorCode.INVALID_COMMITMENT)
        try:
            decompress_point(commitment)
        except ValidationError as e:
            raise RegistrationError(f"Invalid commitment: {e}",
                                    ErrorCode.INVALID_COMMITMENT) from e

    def register(self, commitment: bytes) -> MembershipProof:
        """Append a voter commitment; the returned path is bound to the new root"""
        self._validate_commitment(commitment)

        with self._lock:
            if commitment in self._index_by_commitment:
                raise RegistrationError("Commitment already registered",
                                        ErrorCode.INVALID_COMMITMENT)
            try:
                index = self._tree.append(commitment)
            except ValueError as e:
                raise RegistrationError(str(e), ErrorCode.INVALID_INPUT) from e

            self._registrations.append(EligibilityRegistration(
                commitment=commitment, index=index, timestamp=int(self.clock())))
            self._index_by_commitment[commitment] = index
            root = self._tree.root
            self._root_history.append(root)
            proof = self._tree.get_proof(index)

        logger.info(f"Registered voter #{index}, root {root.hex()[:16]}...")
        return proof

    def verify_membership(self, commitment: bytes, proof: MembershipProof,
                          root: bytes) -> bool:
        """Recompute the root from commitment + path and compare to ``root``"""
        if not isinstance(proof, MembershipProof):
            return False
        return verify_path(commitment, proof, root, ELIGIBILITY_TREE_DOMAIN,
                           self.depth)

    def membership_proof(self, index: int) -> MembershipProof:
        """Fresh path for leaf ``index`` against the current root"""
        with self._lock:
            return self._tree.get_proof(index)

    def index_of(self, commitment: bytes) -> Optional[int]:
        with self._lock:
            return self._index_by_commitment.get(commitment)

    def is_known_root(self, root: bytes) -> bool:
        with self._lock:
            return root in self._root_history

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'registered_voters': len(self._registrations),
                'tree_depth': self._tree.depth,
                'capacity': self._tree.capacity,
                'current_root': self._tree.root.hex(),
                'root_epochs': len(self._root_history),
            }
