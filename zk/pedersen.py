"""
Pedersen commitments over BN128 G1.

C = v*G + r*H where G is the standard generator and H is derived by
try-and-increment hashing so that nobody knows log_G(H). Points travel as
32-byte compressed encodings: the x coordinate big-endian, bit 0x80 of the
first byte carries the parity of y, bit 0x40 marks the point at infinity.
"""

import hashlib
import logging
from functools import lru_cache
from typing import Iterable, Tuple

from cryptography.hazmat.primitives import constant_time
from py_ecc.fields import optimized_bn128_FQ as FQ
from py_ecc.optimized_bn128 import (
    G1,
    Z1,
    add,
    curve_order,
    field_modulus,
    is_inf,
    is_on_curve,
    b as CURVE_B,
    multiply,
    normalize,
)

from utils.utils import generate_secure_random
from .exceptions import EntropyError, ErrorCode, ValidationError

logger = logging.getLogger(__name__)

POINT_BYTES = 32
_PARITY_FLAG = 0x80
_INFINITY_FLAG = 0x40
INFINITY_BYTES = bytes([_INFINITY_FLAG]) + bytes(POINT_BYTES - 1)

Point = Tuple[FQ, FQ, FQ]


def secure_random_bytes(num_bytes: int = 32) -> bytes:
    """OS randomness; an unavailable source is fatal and never retried"""
    try:
        return generate_secure_random(num_bytes)
    except (OSError, NotImplementedError) as e:
        logger.critical("Entropy source unavailable: %s", e)
        raise EntropyError(f"Entropy source unavailable: {e}") from e


def random_scalar() -> int:
    """Uniform non-zero scalar modulo the group order"""
    while True:
        # 64 bytes keeps the modular bias negligible
        value = int.from_bytes(secure_random_bytes(64), 'big') % curve_order
        if value:
            return value


def compress_point(point: Point) -> bytes:
    if is_inf(point):
        return INFINITY_BYTES
    x, y = normalize(point)
    encoded = bytearray(int(x.n).to_bytes(POINT_BYTES, 'big'))
    if int(y.n) & 1:
        encoded[0] |= _PARITY_FLAG
    return bytes(encoded)


def decompress_point(data: bytes) -> Point:
    """Decode a compressed point, raising ValidationError for anything off-curve"""
    if not isinstance(data, (bytes, bytearray)) or len(data) != POINT_BYTES:
        raise ValidationError("Point encoding must be 32 bytes",
                              ErrorCode.INVALID_COMMITMENT)
    data = bytes(data)

    if data[0] & _INFINITY_FLAG:
        if data != INFINITY_BYTES:
            raise ValidationError("Malformed point at infinity",
                                  ErrorCode.INVALID_COMMITMENT)
        return Z1

    y_odd = bool(data[0] & _PARITY_FLAG)
    x = int.from_bytes(bytes([data[0] & 0x3F]) + data[1:], 'big')
    if x >= field_modulus:
        raise ValidationError("Point x coordinate outside field",
                              ErrorCode.INVALID_COMMITMENT)

    y_squared = (pow(x, 3, field_modulus) + 3) % field_modulus
    # field_modulus = 3 mod 4, so the square root is a single exponentiation
    y = pow(y_squared, (field_modulus + 1) // 4, field_modulus)
    if (y * y) % field_modulus != y_squared:
        raise ValidationError("Point is not on the curve",
                              ErrorCode.INVALID_COMMITMENT)
    if bool(y & 1) != y_odd:
        y = field_modulus - y

    point = (FQ(x), FQ(y), FQ.one())
    if not is_on_curve(point, CURVE_B):
        raise ValidationError("Point is not on the curve",
                              ErrorCode.INVALID_COMMITMENT)
    return point


def is_valid_point(data: bytes) -> bool:
    try:
        decompress_point(data)
        return True
    except ValidationError:
        return False


@lru_cache(maxsize=1)
def generator_h() -> Point:
    """Nothing-up-my-sleeve second generator by try-and-increment"""
    counter = 0
    while True:
        seed = b"pedersen_generator_h" + counter.to_bytes(4, 'big')
        x = int.from_bytes(hashlib.sha256(seed).digest(), 'big') % field_modulus
        y_squared = (pow(x, 3, field_modulus) + 3) % field_modulus
        y = pow(y_squared, (field_modulus + 1) // 4, field_modulus)
        if (y * y) % field_modulus == y_squared:
            # BN128 G1 has cofactor 1, any curve point generates the group
            return (FQ(x), FQ(y), FQ.one())
        counter += 1


def scalar_base_multiply(scalar: int) -> bytes:
    """Compressed scalar * G, used for public keys"""
    return compress_point(multiply(G1, scalar % curve_order))


def commit(value: int, blinding: int) -> bytes:
    """Pedersen commitment v*G + r*H in compressed form"""
    v_term = multiply(G1, value % curve_order)
    r_term = multiply(generator_h(), blinding % curve_order)
    return compress_point(add(v_term, r_term))


def open_commitment(commitment: bytes, value: int, blinding: int) -> bool:
    """Check that ``commitment`` opens to (value, blinding)"""
    return constant_time.bytes_eq(bytes(commitment), commit(value, blinding))


def add_commitments(commitments: Iterable[bytes]) -> bytes:
    """Homomorphic sum: commits to the sum of values under the sum of blindings"""
    total = Z1
    for commitment in commitments:
        total = add(total, decompress_point(commitment))
    return compress_point(total)
