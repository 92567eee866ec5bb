"""
Append-only fixed-depth Merkle accumulator using Poseidon
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from cryptography.hazmat.primitives import constant_time

from .poseidon import (
    CircomPoseidon,
    bytes_to_field,
    domain_tag,
    field_to_bytes,
    hash_bytes,
)

logger = logging.getLogger(__name__)

DEFAULT_DEPTH = 20  # 2^20 leaves


@dataclass(frozen=True)
class MembershipProof:
    """Sibling path from a leaf to the root it was generated against"""
    leaf_index: int
    siblings: Tuple[bytes, ...]
    path_bits: Tuple[bool, ...]  # True when the running node is the left child
    root: bytes

    @property
    def depth(self) -> int:
        return len(self.siblings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'leaf_index': self.leaf_index,
            'siblings': [s.hex() for s in self.siblings],
            'path_bits': list(self.path_bits),
            'root': self.root.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MembershipProof':
        return cls(
            leaf_index=int(data['leaf_index']),
            siblings=tuple(bytes.fromhex(s) for s in data['siblings']),
            path_bits=tuple(bool(b) for b in data['path_bits']),
            root=bytes.fromhex(data['root']),
        )


def _leaf_value(domain: str, leaf: bytes) -> int:
    return bytes_to_field(hash_bytes(f"{domain}/leaf", leaf))


def _node_value(domain: str, left: int, right: int) -> int:
    return CircomPoseidon.permute([domain_tag(f"{domain}/node"), left, right])[1]


def root_from_path(leaf: bytes, proof: MembershipProof, domain: str = "merkle") -> bytes:
    """Fold a leaf up its sibling path"""
    current = _leaf_value(domain, leaf)
    for sibling, is_left in zip(proof.siblings, proof.path_bits):
        sibling_value = bytes_to_field(sibling)
        if is_left:
            current = _node_value(domain, current, sibling_value)
        else:
            current = _node_value(domain, sibling_value, current)
    return field_to_bytes(current)


def verify_path(leaf: bytes, proof: MembershipProof, root: bytes,
                domain: str = "merkle", depth: int = None) -> bool:
    """Recompute the root from leaf+path and compare with the supplied root"""
    try:
        if depth is not None and proof.depth != depth:
            return False
        if len(proof.path_bits) != proof.depth or proof.leaf_index < 0:
            return False
        if proof.leaf_index >= (1 << proof.depth):
            return False
        for level, is_left in enumerate(proof.path_bits):
            if is_left != (((proof.leaf_index >> level) & 1) == 0):
                return False
        computed = root_from_path(leaf, proof, domain)
    except (ValueError, TypeError) as e:
        logger.debug(f"Malformed membership path: {e}")
        return False
    return constant_time.bytes_eq(computed, bytes(root))


class MerkleAccumulator:
    """Fixed-depth Merkle tree that only ever grows to the right"""

    def __init__(self, depth: int = DEFAULT_DEPTH, domain: str = "merkle"):
        if depth < 1 or depth > 64:
            raise ValueError(f"Unsupported tree depth {depth}")
        self.depth = depth
        self.domain = domain
        self.empty_nodes = self._compute_empty_nodes()
        self._leaves: List[bytes] = []
        # (level, index) -> node value, level 0 holds leaf hashes
        self._nodes: Dict[Tuple[int, int], int] = {}

    @classmethod
    def from_leaves(cls, leaves: Iterable[bytes], depth: int = DEFAULT_DEPTH,
                    domain: str = "merkle") -> 'MerkleAccumulator':
        tree = cls(depth, domain)
        for leaf in leaves:
            tree.append(leaf)
        return tree

    def _compute_empty_nodes(self) -> List[int]:
        """Hash of an empty subtree at each level, index 0 = empty leaf"""
        empty = [0]
        for _ in range(self.depth):
            empty.append(_node_value(self.domain, empty[-1], empty[-1]))
        return empty

    def __len__(self) -> int:
        return len(self._leaves)

    @property
    def capacity(self) -> int:
        return 1 << self.depth

    @property
    def leaves(self) -> List[bytes]:
        return list(self._leaves)

    def _node(self, level: int, index: int) -> int:
        return self._nodes.get((level, index), self.empty_nodes[level])

    def append(self, leaf: bytes) -> int:
        """Add a leaf and propagate the new path up to the root"""
        index = len(self._leaves)
        if index >= self.capacity:
            raise ValueError(
                f"Accumulator full: depth {self.depth} holds {self.capacity} leaves")

        self._leaves.append(bytes(leaf))
        current = _leaf_value(self.domain, leaf)
        self._nodes[(0, index)] = current

        node_index = index
        for level in range(self.depth):
            if node_index % 2 == 0:
                current = _node_value(
                    self.domain, current, self._node(level, node_index + 1))
            else:
                current = _node_value(
                    self.domain, self._node(level, node_index - 1), current)
            node_index //= 2
            self._nodes[(level + 1, node_index)] = current
        return index

    @property
    def root(self) -> bytes:
        return field_to_bytes(self._node(self.depth, 0))

    def get_proof(self, index: int) -> MembershipProof:
        """Sibling path for ``index`` against the current root"""
        if index < 0 or index >= len(self._leaves):
            raise IndexError(f"Leaf index {index} out of range")

        siblings = []
        path_bits = []
        node_index = index
        for level in range(self.depth):
            siblings.append(field_to_bytes(self._node(level, node_index ^ 1)))
            path_bits.append(node_index % 2 == 0)
            node_index //= 2

        return MembershipProof(
            leaf_index=index,
            siblings=tuple(siblings),
            path_bits=tuple(path_bits),
            root=self.root,
        )

    def verify_proof(self, leaf: bytes, proof: MembershipProof, root: bytes) -> bool:
        return verify_path(leaf, proof, root, self.domain, self.depth)
