"""Main package initialization."""

__version__ = "0.2.0"
__author__ = "ZK Pool Team"
__description__ = "Shielded-value pool with a Groth16 verification gate"

from .core.abi import CircuitId, compute_abi_hash
from .core.commitment import Note, commit, nullify
from .core.merkle_tree import MerkleTree, InclusionProof, verify_inclusion
from .core.root_history import RootHistoryWindow
from .core.nullifier_ledger import NullifierLedger
from .core.vk_registry import VerificationKeyRegistry, KeyRecord
from .core.pool import ShieldedPool, PoolConfig
from .crypto.groth16 import Groth16Verifier, StructuralVerifier, ProofVerifier

__all__ = [
    "CircuitId",
    "compute_abi_hash",
    "Note",
    "commit",
    "nullify",
    "MerkleTree",
    "InclusionProof",
    "verify_inclusion",
    "RootHistoryWindow",
    "NullifierLedger",
    "VerificationKeyRegistry",
    "KeyRecord",
    "ShieldedPool",
    "PoolConfig",
    "Groth16Verifier",
    "StructuralVerifier",
    "ProofVerifier",
]
