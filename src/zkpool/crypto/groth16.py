"""Groth16 proof verification over BN254.

Wire formats (all coordinates 32 bytes, little-endian):

    G1 point      x || y                                   64 bytes
    G2 point      x.c0 || x.c1 || y.c0 || y.c1            128 bytes
    Proof         A (G1) || B (G2) || C (G1)              256 bytes
    Verifying key alpha (G1) || beta (G2) || gamma (G2) || delta (G2) || IC[0..n] (G1)

The identity point is encoded as all zero bytes.

Verification evaluates

    e(A, B) == e(alpha, beta) * e(vk_x, gamma) * e(C, delta)
    vk_x = IC[0] + sum(x_i * IC[i + 1])

as a single product of Miller loops followed by one final exponentiation.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence, Tuple, Type

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    Z1,
    Z2,
    add,
    b,
    b2,
    curve_order,
    final_exponentiate,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    normalize,
    pairing,
)

from zkpool.crypto.field import BASE_FIELD_MODULUS, FIELD_SIZE, require_field_element
from zkpool.exceptions import (
    InsecureVerifierError,
    InvalidProofError,
    InvalidVerificationKeyError,
    PublicInputCountMismatchError,
    ShieldedPoolError,
)
from zkpool.utils.hash import sha256

logger = logging.getLogger(__name__)

G1_SIZE = 2 * FIELD_SIZE
G2_SIZE = 4 * FIELD_SIZE
PROOF_SIZE = 2 * G1_SIZE + G2_SIZE
VK_FIXED_SIZE = G1_SIZE + 3 * G2_SIZE

# Projective points as used by py_ecc.optimized_bn128
G1Point = Tuple[FQ, FQ, FQ]
G2Point = Tuple[FQ2, FQ2, FQ2]


def _coordinate(data: bytes, offset: int, error: Type[ShieldedPoolError]) -> int:
    value = int.from_bytes(data[offset:offset + FIELD_SIZE], "little")
    if value >= BASE_FIELD_MODULUS:
        raise error("Point coordinate is not below the base field modulus")
    return value


def _coeffs(element: FQ2) -> Tuple[int, int]:
    return tuple(c if isinstance(c, int) else c.n for c in element.coeffs)


def decode_g1(data: bytes, error: Type[ShieldedPoolError] = InvalidProofError) -> G1Point:
    """
    Parse a 64-byte G1 point.

    Raises:
        error: If a coordinate is out of range or the point is off the curve
    """
    if len(data) != G1_SIZE:
        raise error(f"G1 point must be {G1_SIZE} bytes")
    if not any(data):
        return Z1
    x = _coordinate(data, 0, error)
    y = _coordinate(data, FIELD_SIZE, error)
    point = (FQ(x), FQ(y), FQ.one())
    if not is_on_curve(point, b):
        raise error("G1 point is not on the curve")
    return point


def decode_g2(data: bytes, error: Type[ShieldedPoolError] = InvalidProofError) -> G2Point:
    """
    Parse a 128-byte G2 point and check it lies in the prime-order subgroup.

    Raises:
        error: If the point is malformed, off the twist, or outside the subgroup
    """
    if len(data) != G2_SIZE:
        raise error(f"G2 point must be {G2_SIZE} bytes")
    if not any(data):
        return Z2
    x0, x1, y0, y1 = (_coordinate(data, i * FIELD_SIZE, error) for i in range(4))
    point = (FQ2([x0, x1]), FQ2([y0, y1]), FQ2.one())
    if not is_on_curve(point, b2):
        raise error("G2 point is not on the twist curve")
    if not is_inf(multiply(point, curve_order)):
        raise error("G2 point is not in the prime-order subgroup")
    return point


def encode_g1(point: G1Point) -> bytes:
    if is_inf(point):
        return bytes(G1_SIZE)
    x, y = normalize(point)
    return x.n.to_bytes(FIELD_SIZE, "little") + y.n.to_bytes(FIELD_SIZE, "little")


def encode_g2(point: G2Point) -> bytes:
    if is_inf(point):
        return bytes(G2_SIZE)
    x, y = normalize(point)
    return b"".join(c.to_bytes(FIELD_SIZE, "little") for c in _coeffs(x) + _coeffs(y))


@dataclass(frozen=True)
class Groth16Proof:
    """A proof (A, B, C)."""

    a: G1Point
    b: G2Point
    c: G1Point

    @classmethod
    def from_bytes(cls, data: bytes) -> "Groth16Proof":
        """
        Parse a 256-byte proof.

        Raises:
            InvalidProofError: On wrong length, malformed points, or identity A/C
        """
        if not isinstance(data, (bytes, bytearray)) or len(data) != PROOF_SIZE:
            raise InvalidProofError(f"Proof must be {PROOF_SIZE} bytes")
        data = bytes(data)
        a = decode_g1(data[:G1_SIZE])
        b_point = decode_g2(data[G1_SIZE:G1_SIZE + G2_SIZE])
        c = decode_g1(data[G1_SIZE + G2_SIZE:])
        if is_inf(a) or is_inf(b_point) or is_inf(c):
            raise InvalidProofError("Proof contains the identity point")
        return cls(a=a, b=b_point, c=c)

    def to_bytes(self) -> bytes:
        return encode_g1(self.a) + encode_g2(self.b) + encode_g1(self.c)


@dataclass(frozen=True)
class VerifyingKey:
    """Groth16 verifying key for one circuit."""

    alpha_g1: G1Point
    beta_g2: G2Point
    gamma_g2: G2Point
    delta_g2: G2Point
    ic: Tuple[G1Point, ...]

    @property
    def n_public(self) -> int:
        return len(self.ic) - 1

    @staticmethod
    def expected_size(n_public: int) -> int:
        return VK_FIXED_SIZE + (n_public + 1) * G1_SIZE

    @classmethod
    def from_bytes(cls, data: bytes) -> "VerifyingKey":
        """
        Parse serialized key material.

        Raises:
            InvalidVerificationKeyError: On bad length or malformed points
        """
        if not isinstance(data, (bytes, bytearray)) or len(data) < VK_FIXED_SIZE + G1_SIZE:
            raise InvalidVerificationKeyError("Verifying key is too short")
        if (len(data) - VK_FIXED_SIZE) % G1_SIZE:
            raise InvalidVerificationKeyError("Verifying key IC section is not a whole number of points")

        error = InvalidVerificationKeyError
        data = bytes(data)
        offset = 0
        alpha = decode_g1(data[offset:offset + G1_SIZE], error)
        offset += G1_SIZE
        g2_points = []
        for _ in range(3):
            g2_points.append(decode_g2(data[offset:offset + G2_SIZE], error))
            offset += G2_SIZE
        ic = tuple(
            decode_g1(data[i:i + G1_SIZE], error)
            for i in range(offset, len(data), G1_SIZE)
        )
        return cls(alpha, g2_points[0], g2_points[1], g2_points[2], ic)

    def to_bytes(self) -> bytes:
        return b"".join(
            [encode_g1(self.alpha_g1)]
            + [encode_g2(p) for p in (self.beta_g2, self.gamma_g2, self.delta_g2)]
            + [encode_g1(p) for p in self.ic]
        )

    @property
    def content_hash(self) -> bytes:
        return sha256(self.to_bytes())


class ProofVerifier(ABC):
    """Interface for proof verification backends."""

    name = "abstract"
    is_sound = False

    def check_inputs(self, public_inputs: Sequence[int], vk: VerifyingKey) -> None:
        """Shape checks shared by every backend; run before any curve work."""
        if len(public_inputs) != vk.n_public:
            raise PublicInputCountMismatchError(
                f"Verifying key expects {vk.n_public} public inputs, got {len(public_inputs)}"
            )
        for index, value in enumerate(public_inputs):
            require_field_element(value, f"public input {index}")

    @abstractmethod
    def verify(self, proof: bytes, public_inputs: Sequence[int], vk: VerifyingKey) -> bool:
        """
        Verify a serialized proof.

        Returns:
            bool: True only if the proof is valid for the inputs and key

        Raises:
            PublicInputCountMismatchError: If the input count differs from the key
            InvalidFieldElementError: If an input is not canonical
            InvalidProofError: If the proof bytes are malformed
        """


class Groth16Verifier(ProofVerifier):
    """Pairing-based verifier; the only backend fit for production."""

    name = "groth16"
    is_sound = True

    def verify(self, proof: bytes, public_inputs: Sequence[int], vk: VerifyingKey) -> bool:
        self.check_inputs(public_inputs, vk)
        parsed = Groth16Proof.from_bytes(proof)

        vk_x = vk.ic[0]
        for value, point in zip(public_inputs, vk.ic[1:]):
            if value:
                vk_x = add(vk_x, multiply(point, value))

        # e(-A, B) * e(alpha, beta) * e(vk_x, gamma) * e(C, delta) == 1
        product = FQ12.one()
        for g2_point, g1_point in (
            (parsed.b, neg(parsed.a)),
            (vk.beta_g2, vk.alpha_g1),
            (vk.gamma_g2, vk_x),
            (vk.delta_g2, parsed.c),
        ):
            product = product * pairing(g2_point, g1_point, final_exponentiate=False)

        valid = final_exponentiate(product) == FQ12.one()
        logger.debug("Groth16 verification with %d inputs: %s", len(public_inputs), valid)
        return valid


class StructuralVerifier(ProofVerifier):
    """
    Shape-only stand-in for local development.

    Checks lengths, input ranges, and that proof points decode. Performs no
    pairing and accepts any well-formed proof.
    """

    name = "structural"
    is_sound = False

    def verify(self, proof: bytes, public_inputs: Sequence[int], vk: VerifyingKey) -> bool:
        logger.warning("INSECURE structural verifier accepted a proof without a pairing check")
        self.check_inputs(public_inputs, vk)
        Groth16Proof.from_bytes(proof)
        return True


def build_verifier(settings) -> ProofVerifier:
    """
    Select the verifier backend from settings.

    The structural backend needs ``allow_insecure_verifier`` and is refused
    outright in the production environment.

    Raises:
        InsecureVerifierError: If the structural backend is not allowed
        ValueError: For an unknown backend name
    """
    backend = settings.verifier_backend
    if backend == Groth16Verifier.name:
        logger.info("Using Groth16 pairing verifier")
        return Groth16Verifier()
    if backend == StructuralVerifier.name:
        if settings.environment == "production":
            raise InsecureVerifierError("Structural verifier cannot run in production")
        if not settings.allow_insecure_verifier:
            raise InsecureVerifierError(
                "Structural verifier requires allow_insecure_verifier=true"
            )
        logger.warning("INSECURE: structural verifier selected; proofs are NOT checked")
        return StructuralVerifier()
    raise ValueError(f"Unknown verifier backend: {backend}")
