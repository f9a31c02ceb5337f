"""Development-only Groth16 setup with a known trapdoor.

The verifying key produced here is a genuine BN254 Groth16 key, but because
the trapdoor scalars are kept, anyone holding this object can produce a
valid proof for *any* public-input vector. It exists so tests and local
deployments can exercise the real pairing verifier without a ceremony.
Gate proof generation behind a witness check (see ``circuits``).
"""

import secrets
from dataclasses import dataclass
from typing import Sequence, Tuple

from py_ecc.optimized_bn128 import G1, G2, curve_order, multiply

from zkpool.crypto.groth16 import Groth16Proof, VerifyingKey
from zkpool.crypto.field import require_field_element


def _random_scalar() -> int:
    return 1 + secrets.randbelow(curve_order - 1)


@dataclass(frozen=True)
class DevelopmentSetup:
    """Trapdoor and verifying key for one circuit shape."""

    alpha: int
    beta: int
    gamma: int
    delta: int
    ic_scalars: Tuple[int, ...]
    verifying_key: VerifyingKey

    @property
    def n_public(self) -> int:
        return len(self.ic_scalars) - 1

    @classmethod
    def generate(cls, n_public: int) -> "DevelopmentSetup":
        """
        Draw a fresh trapdoor for a circuit with n_public inputs.

        Args:
            n_public: Number of public inputs

        Returns:
            DevelopmentSetup: Trapdoor plus the matching verifying key
        """
        if n_public < 0:
            raise ValueError("n_public must be non-negative")
        alpha, beta, gamma, delta = (_random_scalar() for _ in range(4))
        ic_scalars = tuple(_random_scalar() for _ in range(n_public + 1))
        vk = VerifyingKey(
            alpha_g1=multiply(G1, alpha),
            beta_g2=multiply(G2, beta),
            gamma_g2=multiply(G2, gamma),
            delta_g2=multiply(G2, delta),
            ic=tuple(multiply(G1, s) for s in ic_scalars),
        )
        return cls(alpha, beta, gamma, delta, ic_scalars, vk)

    def prove(self, public_inputs: Sequence[int]) -> bytes:
        """
        Produce a serialized proof for public_inputs.

        Picks random a, b and solves for c so that
        ``a*b = alpha*beta + L*gamma + c*delta`` where L is the IC scalar
        combination of the inputs.
        """
        if len(public_inputs) != self.n_public:
            raise ValueError(f"Expected {self.n_public} public inputs, got {len(public_inputs)}")

        linear = self.ic_scalars[0]
        for value, scalar in zip(public_inputs, self.ic_scalars[1:]):
            require_field_element(value)
            linear = (linear + value * scalar) % curve_order

        delta_inv = pow(self.delta, -1, curve_order)
        while True:
            a = _random_scalar()
            b = _random_scalar()
            c = (a * b - self.alpha * self.beta - linear * self.gamma) * delta_inv % curve_order
            if c:
                break

        proof = Groth16Proof(a=multiply(G1, a), b=multiply(G2, b), c=multiply(G1, c))
        return proof.to_bytes()
