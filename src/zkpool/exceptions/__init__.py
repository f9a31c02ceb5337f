"""Custom exceptions for the shielded pool.

Every error carries a stable ``code`` so callers (and the HTTP layer) can
react to the kind of rejection without parsing messages.
"""


class ShieldedPoolError(Exception):
    """Base exception for all shielded pool errors."""
    code = "ShieldedPoolError"


# Encoding Errors
class EncodingError(ShieldedPoolError):
    """Base exception for public-input encoding errors."""
    code = "InvalidEncoding"


class InvalidFieldElementError(EncodingError):
    """Raised when a value is not a canonical scalar field element."""
    code = "FieldOutOfRange"


class AmountOverflowError(EncodingError):
    """Raised when an amount or fee does not fit in 64 bits."""
    code = "AmountOverflow"


class RecipientLimbOverflowError(EncodingError):
    """Raised when a recipient limb does not fit in 128 bits."""
    code = "RecipientLimbOverflow"


class PublicInputCountMismatchError(EncodingError):
    """Raised when the public-input vector has the wrong length."""
    code = "PublicInputCountMismatch"


# Proof Errors
class ProofError(ShieldedPoolError):
    """Base exception for proof-related errors."""
    code = "ProofError"


class InvalidProofError(ProofError):
    """Raised when a proof is malformed or fails verification."""
    code = "InvalidProof"


class InsecureVerifierError(ProofError):
    """Raised when a non-pairing verifier is requested without opt-in."""
    code = "InsecureVerifier"


class WitnessError(ProofError):
    """Raised when a witness does not satisfy its circuit constraints."""
    code = "WitnessError"


# Merkle Tree Errors
class MerkleTreeError(ShieldedPoolError):
    """Base exception for Merkle tree errors."""
    code = "MerkleTreeError"


class MalformedInclusionProofError(MerkleTreeError):
    """Raised when an inclusion proof has a non-binary bit or bad length."""
    code = "MalformedInclusionProof"


class TreeFullError(MerkleTreeError):
    """Raised when the tree has no free leaf left."""
    code = "TreeFull"


class InvalidLeafIndexError(MerkleTreeError):
    """Raised when a leaf index is out of range."""
    code = "InvalidLeafIndex"


class InvalidMerkleDepthError(MerkleTreeError):
    """Raised when a tree depth is outside the supported range."""
    code = "InvalidMerkleDepth"


# Ledger State Errors
class LedgerStateError(ShieldedPoolError):
    """Base exception for root window and nullifier ledger errors."""
    code = "LedgerStateError"


class StaleRootError(LedgerStateError):
    """Raised when a root is not in the current root window."""
    code = "StaleRoot"


class NullifierAlreadySpentError(LedgerStateError):
    """Raised when attempting to spend the same nullifier twice."""
    code = "NullifierAlreadySpent"


class NullifierCapacityExceededError(LedgerStateError):
    """Raised when a nullifier shard is full."""
    code = "NullifierCapacityExceeded"


class InvalidRootWindowError(LedgerStateError):
    """Raised when a root window capacity is outside the supported range."""
    code = "InvalidRootWindow"


# Registry Errors
class RegistryError(ShieldedPoolError):
    """Base exception for verification key registry errors."""
    code = "RegistryError"


class VkHashMismatchError(RegistryError):
    """Raised when key material does not match its declared hash."""
    code = "VkHashMismatch"


class AbiHashMismatchError(RegistryError):
    """Raised when an ABI hash differs from the pool's locked layout."""
    code = "AbiHashMismatch"


class InvalidVerificationKeyError(RegistryError):
    """Raised when key material cannot be parsed for its circuit."""
    code = "InvalidVkData"


class VerificationKeyNotSetError(RegistryError):
    """Raised when no key has been uploaded for a circuit."""
    code = "VkNotSet"


class InvalidCircuitError(RegistryError):
    """Raised for an unknown circuit identifier."""
    code = "InvalidCircuitType"


# Pool Errors
class PoolError(ShieldedPoolError):
    """Base exception for pool operation errors."""
    code = "PoolError"


class PoolPausedError(PoolError):
    """Raised when a submission arrives while the pool is paused."""
    code = "PoolPaused"


class UnauthorizedError(PoolError):
    """Raised when a non-admin attempts an admin-only mutation."""
    code = "Unauthorized"


class FeeExceedsAmountError(PoolError):
    """Raised when a withdrawal fee is larger than its amount."""
    code = "FeeExceedsAmount"


class InsufficientFundsError(PoolError):
    """Raised when the treasury cannot cover a release."""
    code = "InsufficientFunds"


class PoolNotInitializedError(PoolError):
    """Raised when loading a pool that was never initialized."""
    code = "PoolNotInitialized"


# Infrastructure Errors
class StorageError(ShieldedPoolError):
    """Raised when persisting pool state fails."""
    code = "StorageError"


class AuthenticationError(ShieldedPoolError):
    """Raised when an identity signature or token is invalid."""
    code = "AuthenticationError"
