"""Pydantic data models for the pool API."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from zkpool.utils.encoding import hex_to_bytes

HEX_32 = r"^(0x)?[0-9a-fA-F]{64}$"


class SubmitRequest(BaseModel):
    """Proof submission for any circuit."""
    proof: str = Field(..., description="256-byte Groth16 proof (hex)")
    public_inputs: List[str] = Field(..., description="32-byte little-endian field elements (hex)")
    fee_recipient: Optional[str] = Field(None, pattern=HEX_32, description="Withdraw only: fee payee (hex)")

    @field_validator("proof")
    @classmethod
    def _proof_is_hex(cls, value: str) -> str:
        hex_to_bytes(value)
        return value

    @field_validator("public_inputs")
    @classmethod
    def _inputs_are_hex(cls, values: List[str]) -> List[str]:
        for value in values:
            hex_to_bytes(value)
        return values

    def proof_bytes(self) -> bytes:
        return hex_to_bytes(self.proof)

    def public_input_bytes(self) -> List[bytes]:
        return [hex_to_bytes(value) for value in self.public_inputs]

    def fee_recipient_bytes(self) -> Optional[bytes]:
        return None if self.fee_recipient is None else hex_to_bytes(self.fee_recipient)


class SubmitResponse(BaseModel):
    """Accepted submission receipt."""
    circuit: str
    receipt: Dict[str, Any]


class TokenRequest(BaseModel):
    """Signed login challenge."""
    public_key: str = Field(..., pattern=HEX_32, description="Ed25519 public key (hex)")
    timestamp: int = Field(..., description="Unix seconds included in the signed message")
    signature: str = Field(..., pattern=r"^(0x)?[0-9a-fA-F]{128}$", description="Ed25519 signature (hex)")


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class AddRootRequest(BaseModel):
    root: str = Field(..., pattern=HEX_32, description="Root as 32-byte little-endian field (hex)")


class AddRootResponse(BaseModel):
    slot: int
    window_size: int


class SetVerificationKeyRequest(BaseModel):
    circuit_id: int = Field(..., ge=0, le=2, description="0=deposit 1=transfer 2=withdraw")
    key: str = Field(..., description="Serialized verifying key (hex)")
    declared_hash: str = Field(..., pattern=HEX_32, description="SHA-256 of the key (hex)")
    abi_hash: Optional[str] = Field(None, pattern=HEX_32, description="ABI hash the key was built for")


class PauseRequest(BaseModel):
    paused: bool


class NullifierStatusResponse(BaseModel):
    nullifier: str
    spent: bool


class ErrorResponse(BaseModel):
    """Error response."""
    code: str = Field(..., description="Error code")
    detail: str = Field(..., description="Error message")
