"""REST API endpoints for the shielded pool."""

import logging
from datetime import datetime, timedelta, UTC
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from zkpool import __version__
from zkpool.config import PoolSettings, configure_logging
from zkpool.core.abi import CircuitId
from zkpool.core.pool import ShieldedPool
from zkpool.exceptions import (
    AuthenticationError,
    InvalidFieldElementError,
    NullifierAlreadySpentError,
    NullifierCapacityExceededError,
    PoolPausedError,
    ShieldedPoolError,
    StaleRootError,
    StorageError,
    UnauthorizedError,
)
from zkpool.models.schemas import (
    AddRootRequest,
    AddRootResponse,
    ErrorResponse,
    NullifierStatusResponse,
    PauseRequest,
    SetVerificationKeyRequest,
    SubmitRequest,
    SubmitResponse,
    TokenRequest,
    TokenResponse,
)
from zkpool.security import authenticate_identity, create_access_token, identity_from_token
from zkpool.storage import DatabaseManager
from zkpool.utils.encoding import hex_to_bytes, hex_to_field

logger = logging.getLogger(__name__)

CONFLICT_ERRORS = (NullifierAlreadySpentError, StaleRootError, PoolPausedError, NullifierCapacityExceededError)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def error_status(exc: ShieldedPoolError) -> int:
    """HTTP status for a pool error."""
    if isinstance(exc, AuthenticationError):
        return 401
    if isinstance(exc, UnauthorizedError):
        return 403
    if isinstance(exc, CONFLICT_ERRORS):
        return 409
    if isinstance(exc, StorageError):
        return 500
    return 400


def create_app(
    pool: ShieldedPool,
    settings: Optional[PoolSettings] = None,
    db: Optional[DatabaseManager] = None,
) -> FastAPI:
    """
    Build the API around an existing pool.

    Args:
        pool: Pool instance served by this app
        settings: Settings for token signing (defaults to environment)
        db: Optional database used for the event history endpoint
    """
    settings = settings or PoolSettings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Shielded Pool API",
        description="Deposits, private transfers and withdrawals behind a Groth16 verification gate",
        version=__version__,
    )
    app.state.pool = pool
    app.state.settings = settings
    app.state.db = db

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic validation errors (422) to 400 Bad Request."""
        messages = []
        for error in exc.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            messages.append(f"{field}: {error['msg']}")
        return JSONResponse(status_code=400, content={"code": "InvalidRequest", "detail": "; ".join(messages)})

    @app.exception_handler(ShieldedPoolError)
    async def pool_exception_handler(request: Request, exc: ShieldedPoolError):
        status = error_status(exc)
        if status >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc)
        else:
            logger.warning("Rejected %s: %s %s", request.url.path, exc.code, exc)
        return JSONResponse(status_code=status, content={"code": exc.code, "detail": str(exc)})

    def get_pool() -> ShieldedPool:
        return app.state.pool

    async def get_authority(authorization: Optional[str] = Header(None)) -> bytes:
        """Identity from the bearer token; the pool decides what it may do."""
        if not authorization:
            raise HTTPException(status_code=401, detail="Missing authorization header")
        if not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Invalid authorization header")
        return identity_from_token(authorization[7:], settings.jwt_secret)

    @app.get("/health", tags=["System"])
    async def health():
        return {"status": "ok", "version": __version__, "timestamp": datetime.now(UTC).isoformat()}

    @app.get("/state", tags=["Pool"])
    async def state(pool: ShieldedPool = Depends(get_pool)):
        return pool.state()

    @app.get("/roots", tags=["Pool"])
    async def roots(pool: ShieldedPool = Depends(get_pool)):
        return pool.roots.to_dict()

    @app.get(
        "/nullifiers/{nullifier}", response_model=NullifierStatusResponse,
        responses={400: {"model": ErrorResponse}}, tags=["Pool"],
    )
    async def nullifier_status(nullifier: str, pool: ShieldedPool = Depends(get_pool)):
        try:
            value = hex_to_field(nullifier)
        except ValueError:
            raise InvalidFieldElementError("Nullifier must be 32 bytes of hex") from None
        return NullifierStatusResponse(nullifier=nullifier, spent=pool.is_spent(value))

    @app.get("/events", tags=["Pool"])
    async def events(kind: Optional[str] = None, limit: int = 100, pool: ShieldedPool = Depends(get_pool)):
        if app.state.db is not None:
            with app.state.db.get_session() as session:
                rows = app.state.db.get_events(session, kind=kind, limit=limit)
                return [{"id": row.id, "kind": row.kind, "payload": row.payload} for row in rows]
        recent = pool.events.events(kind)[-limit:]
        return [event.to_dict() for event in reversed(recent)]

    @app.post("/auth/token", response_model=TokenResponse, tags=["Auth"])
    async def issue_token(request: TokenRequest):
        identity = authenticate_identity(
            hex_to_bytes(request.public_key), request.timestamp, hex_to_bytes(request.signature)
        )
        token, expires_at = create_access_token(
            identity, settings.jwt_secret, timedelta(minutes=settings.jwt_expire_minutes)
        )
        logger.info("Issued token for %s...", identity.hex()[:16])
        return TokenResponse(access_token=token, expires_at=expires_at)

    @app.post("/submit/{circuit}", response_model=SubmitResponse, responses=ERROR_RESPONSES, tags=["Submit"])
    def submit(circuit: str, request: SubmitRequest, pool: ShieldedPool = Depends(get_pool)):
        try:
            circuit_id = CircuitId[circuit.upper()]
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown circuit: {circuit}") from None
        kwargs = {}
        if circuit_id == CircuitId.WITHDRAW:
            kwargs["fee_recipient"] = request.fee_recipient_bytes()
        receipt = pool.submit(circuit_id, request.proof_bytes(), request.public_input_bytes(), **kwargs)
        return SubmitResponse(circuit=circuit_id.name.lower(), receipt=receipt.to_dict())

    @app.post("/admin/roots", response_model=AddRootResponse, responses=ERROR_RESPONSES, tags=["Admin"])
    def add_root(
        request: AddRootRequest,
        authority: bytes = Depends(get_authority),
        pool: ShieldedPool = Depends(get_pool),
    ):
        slot = pool.add_root(authority, hex_to_bytes(request.root))
        return AddRootResponse(slot=slot, window_size=len(pool.roots))

    @app.post("/admin/verification-keys", responses=ERROR_RESPONSES, tags=["Admin"])
    def set_verification_key(
        request: SetVerificationKeyRequest,
        authority: bytes = Depends(get_authority),
        pool: ShieldedPool = Depends(get_pool),
    ):
        try:
            key_bytes = hex_to_bytes(request.key)
        except ValueError:
            raise HTTPException(status_code=400, detail="Key must be hex") from None
        record = pool.set_verification_key(
            authority,
            request.circuit_id,
            key_bytes,
            hex_to_bytes(request.declared_hash),
            None if request.abi_hash is None else hex_to_bytes(request.abi_hash),
        )
        return record.to_dict()

    @app.post("/admin/pause", responses=ERROR_RESPONSES, tags=["Admin"])
    def set_paused(
        request: PauseRequest,
        authority: bytes = Depends(get_authority),
        pool: ShieldedPool = Depends(get_pool),
    ):
        pool.set_paused(authority, request.paused)
        return {"paused": pool.config.paused}

    return app
