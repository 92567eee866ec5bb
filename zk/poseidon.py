"""
Poseidon permutation and domain-separated sponge over the BN254 scalar field.

Width t=3 (rate 2, capacity 1), x^5 S-box, 8 full rounds and 57 partial
rounds. The MDS matrix is the Cauchy construction from the Poseidon paper
and round constants are expanded from SHA-256 so that every constant is
reproducible from its index.
"""

import hashlib
from functools import lru_cache
from typing import Iterable, List, Sequence

# BN254 scalar field prime
PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617

FIELD_BYTES = 32
CHUNK_BYTES = 31  # 31-byte chunks always fit below PRIME


class CircomPoseidon:
    """Poseidon permutation with t=3 matching the circomlib round schedule"""

    FULL_ROUNDS = 8
    PARTIAL_ROUNDS = 57
    WIDTH = 3
    RATE = 2

    @staticmethod
    def load_round_constants(full_rounds: int, partial_rounds: int, width: int) -> List[int]:
        """Expand one constant per state element per round from SHA-256"""
        total = (full_rounds + partial_rounds) * width
        constants = []
        for i in range(total):
            seed = f"poseidon_bn254_t3_rc_{i}".encode()
            constants.append(int.from_bytes(
                hashlib.sha256(seed).digest(), 'big') % PRIME)
        return constants

    @staticmethod
    def load_mds_matrix(t: int) -> List[List[int]]:
        """Cauchy matrix M[i][j] = 1 / (x_i + y_j) with x_i = i, y_j = t + j"""
        return [[pow(i + t + j, PRIME - 2, PRIME) for j in range(t)]
                for i in range(t)]

    ROUND_CONSTANTS = load_round_constants.__func__(
        FULL_ROUNDS, PARTIAL_ROUNDS, WIDTH)
    MDS_MATRIX = load_mds_matrix.__func__(WIDTH)

    @staticmethod
    def permute(state: Sequence[int]) -> List[int]:
        """Apply the full permutation to a 3-element state"""
        if len(state) != CircomPoseidon.WIDTH:
            raise ValueError(
                f"Poseidon state must have {CircomPoseidon.WIDTH} elements")

        s0, s1, s2 = (x % PRIME for x in state)
        rc = CircomPoseidon.ROUND_CONSTANTS
        m = CircomPoseidon.MDS_MATRIX
        half_full = CircomPoseidon.FULL_ROUNDS // 2
        total_rounds = CircomPoseidon.FULL_ROUNDS + CircomPoseidon.PARTIAL_ROUNDS

        idx = 0
        for r in range(total_rounds):
            # ark
            s0 = (s0 + rc[idx]) % PRIME
            s1 = (s1 + rc[idx + 1]) % PRIME
            s2 = (s2 + rc[idx + 2]) % PRIME
            idx += 3

            # sbox
            full_round = r < half_full or r >= half_full + CircomPoseidon.PARTIAL_ROUNDS
            s0 = pow(s0, 5, PRIME)
            if full_round:
                s1 = pow(s1, 5, PRIME)
                s2 = pow(s2, 5, PRIME)

            # mix
            s0, s1, s2 = (
                (m[0][0] * s0 + m[0][1] * s1 + m[0][2] * s2) % PRIME,
                (m[1][0] * s0 + m[1][1] * s1 + m[1][2] * s2) % PRIME,
                (m[2][0] * s0 + m[2][1] * s1 + m[2][2] * s2) % PRIME,
            )

        return [s0, s1, s2]


@lru_cache(maxsize=128)
def domain_tag(domain: str) -> int:
    """Capacity element that separates one use of the sponge from another"""
    digest = hashlib.sha256(b"poseidon-domain:" + domain.encode()).digest()
    return int.from_bytes(digest, 'big') % PRIME


def bytes_to_elements(data: bytes) -> List[int]:
    """Length-prefixed 31-byte chunking so distinct byte strings never collide"""
    elements = [len(data)]
    for i in range(0, len(data), CHUNK_BYTES):
        elements.append(int.from_bytes(data[i:i + CHUNK_BYTES], 'big'))
    return elements


def sponge_hash(domain: str, elements: Iterable[int]) -> int:
    """Absorb field elements into a rate-2 sponge keyed by ``domain``"""
    values = [int(e) for e in elements]
    for value in values:
        if value < 0 or value >= PRIME:
            raise ValueError("Sponge input outside field bounds")

    values = [len(values)] + values
    if len(values) % CircomPoseidon.RATE:
        values.append(0)

    state = [domain_tag(domain), 0, 0]
    for i in range(0, len(values), CircomPoseidon.RATE):
        state[1] = (state[1] + values[i]) % PRIME
        state[2] = (state[2] + values[i + 1]) % PRIME
        state = CircomPoseidon.permute(state)
    return state[1]


def hash_bytes(domain: str, *parts: bytes) -> bytes:
    """Domain-separated hash of byte strings, returned as a 32-byte digest"""
    elements = []
    for part in parts:
        elements.extend(bytes_to_elements(bytes(part)))
    return field_to_bytes(sponge_hash(domain, elements))


def field_to_bytes(value: int) -> bytes:
    return (value % PRIME).to_bytes(FIELD_BYTES, 'big')


def bytes_to_field(data: bytes) -> int:
    value = int.from_bytes(data, 'big')
    if value >= PRIME:
        raise ValueError("Encoded value outside field bounds")
    return value
