"""
HTTP server implementation for the Points Server.

Thin FastAPI surface over PointsServicer. Authentication happens
upstream; the caller's public id and role arrive in headers
(X-Account / X-Role by default, see HttpSettings).

Endpoints:
    POST /v1/tokens/redeem      redeem a token for the caller
    POST /v1/points/transfer    send points to another account
    GET  /v1/points             caller balance and history
    POST /v1/tokens/issue       issue given codes (admin)
    POST /v1/tokens/generate    generate and issue codes (admin)
    POST /v1/accounts           create an account (admin)
    GET  /v1/health             health status

Invariants:
    - HTTP endpoints have the same semantics as the servicer methods
    - PointsError responses carry {"error", "error_code", ...details}
    - Malformed bodies answer 400 INVALID_REQUEST in the same shape
    - Unexpected errors return a generic 500 body

How to change safely:
    - Map new error codes in ERROR_STATUS
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .._version import __version__
from ..errors import PointsError
from .servicer import PointsServicer
from .settings import HttpSettings

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "INVALID_AMOUNT": 400,
    "INVALID_DELTA": 400,
    "INVALID_LEDGER_ENTRY": 400,
    "INVALID_TOKEN_CODE": 400,
    "INVALID_ISSUANCE_REQUEST": 400,
    "INVALID_REQUEST": 400,
    "SELF_TRANSFER_REJECTED": 400,
    "INSUFFICIENT_BALANCE": 400,
    "UNKNOWN_ACCOUNT": 404,
    "UNKNOWN_RECIPIENT": 404,
    "UNKNOWN_CLAIMANT": 404,
    "TOKEN_NOT_FOUND": 404,
    "ALREADY_REDEEMED": 409,
    "DUPLICATE_TOKEN_CODE": 409,
    "TRANSACTION_CONFLICT": 409,
    "STORE_UNAVAILABLE": 503,
    "ACCOUNT_DIRECTORY_ERROR": 503,
}


# --- Request/Response Models ---


class RedeemRequest(BaseModel):
    """Request to redeem a token.

    code is validated by the core so a missing code reports INVALID_TOKEN_CODE.
    """

    code: Any = Field(None, description="Token code")


class RedeemResponse(BaseModel):
    userId: str
    redeemedCode: str
    pointsEarned: int
    totalPoints: int


class TransferRequest(BaseModel):
    """Request to send points.

    Both fields are validated by the core, in transfer precondition order:
    a bad amount reports INVALID_AMOUNT before a missing recipient reports
    UNKNOWN_RECIPIENT.
    """

    points: Any = Field(None, description="Positive number of points")
    to_user_id: Any = Field(None, alias="toUserId", description="Recipient public id")


class TransferResponse(BaseModel):
    fromUserId: str
    toUserId: str
    points: int
    senderBalanceAfter: int
    receiverBalanceAfter: int
    transferId: str


class HistoryItem(BaseModel):
    id: int
    delta: int
    tag: str
    counterparty: str | None = None
    createdAt: int
    text: str


class PointsResponse(BaseModel):
    userId: str
    totalPoints: int
    history: list[HistoryItem]


class IssueRequest(BaseModel):
    """Request to issue caller-supplied codes."""

    codes: list[str] = Field(..., description="Codes to issue")
    points_per_code: Any = Field(None, alias="pointsPerCode", description="Points per code")


class GenerateRequest(BaseModel):
    """Request to generate and issue random codes."""

    count: Any = Field(None, description="Number of codes")
    points_per_code: Any = Field(None, alias="pointsPerCode", description="Points per code")
    length: Any = Field(None, description="Code length")
    alphabet: str = Field("numeric", description="numeric or alphanumeric")


class IssueResponse(BaseModel):
    insertedCount: int
    skippedCount: int
    pointsPerCode: int
    codes: list[str]
    skippedCodes: list[str]


class CreateAccountRequest(BaseModel):
    display_name: str | None = Field(None, alias="displayName", description="Display name")


class AccountResponse(BaseModel):
    userId: str
    displayName: str | None = None
    createdAt: int


def create_http_app(
    servicer: PointsServicer,
    settings: HttpSettings | None = None,
) -> FastAPI:
    """Create the HTTP application.

    Args:
        servicer: PointsServicer instance
        settings: HTTP settings (loaded from env if not provided)

    Returns:
        FastAPI application
    """
    settings = settings or HttpSettings()

    app = FastAPI(
        title="Points Server",
        description="Loyalty points ledger: token redemption and peer transfers.",
        version=__version__,
    )
    app.state.servicer = servicer
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(PointsError)
    async def points_error_handler(request: Request, exc: PointsError) -> JSONResponse:
        status = ERROR_STATUS.get(exc.code, 400)
        if status >= 500:
            logger.warning(f"{request.url.path} failed: {exc.code}")
        return JSONResponse(exc.to_dict(), status_code=status)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = sorted(
            {".".join(str(part) for part in err["loc"][1:]) for err in exc.errors()} - {""}
        )
        return JSONResponse(
            {
                "error": "malformed request body",
                "error_code": "INVALID_REQUEST",
                "fields": fields,
            },
            status_code=ERROR_STATUS["INVALID_REQUEST"],
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"HTTP handler error: {exc}", exc_info=exc)
        return JSONResponse(
            {"error": "internal server error", "error_code": "INTERNAL"},
            status_code=500,
        )

    # --- Dependencies ---

    def get_servicer(request: Request) -> PointsServicer:
        return request.app.state.servicer

    def get_caller(request: Request) -> str:
        """Public id of the authenticated caller."""
        caller = request.headers.get(settings.account_header, "").strip()
        if not caller:
            raise HTTPException(
                status_code=400, detail=f"{settings.account_header} header is required"
            )
        return caller

    def require_admin(request: Request) -> None:
        if request.headers.get(settings.role_header) != settings.admin_role:
            raise HTTPException(status_code=403, detail="admin role required")

    # --- Routes ---

    @app.post("/v1/tokens/redeem", response_model=RedeemResponse)
    async def redeem(
        body: RedeemRequest,
        caller: str = Depends(get_caller),
        points: PointsServicer = Depends(get_servicer),
    ):
        """Redeem a token; its value is added to the caller's balance."""
        return await points.redeem(body.code, caller)

    @app.post("/v1/points/transfer", response_model=TransferResponse, status_code=201)
    async def transfer(
        body: TransferRequest,
        caller: str = Depends(get_caller),
        points: PointsServicer = Depends(get_servicer),
    ):
        """Send points from the caller to another account."""
        return await points.transfer(caller, body.to_user_id, body.points)

    @app.get("/v1/points", response_model=PointsResponse)
    async def get_points(
        limit: int | None = Query(None, ge=1, le=1000, description="History page size"),
        caller: str = Depends(get_caller),
        points: PointsServicer = Depends(get_servicer),
    ):
        """Caller balance and most-recent-first history."""
        return await points.get_points(caller, limit)

    @app.post(
        "/v1/tokens/issue",
        response_model=IssueResponse,
        status_code=201,
        dependencies=[Depends(require_admin)],
    )
    async def issue_tokens(body: IssueRequest, points: PointsServicer = Depends(get_servicer)):
        """Issue the given codes; existing codes are reported as skipped."""
        return await points.issue_tokens(body.codes, body.points_per_code)

    @app.post(
        "/v1/tokens/generate",
        response_model=IssueResponse,
        status_code=201,
        dependencies=[Depends(require_admin)],
    )
    async def generate_tokens(body: GenerateRequest, points: PointsServicer = Depends(get_servicer)):
        """Generate and issue random codes."""
        return await points.generate_tokens(
            body.count, body.points_per_code, body.length, body.alphabet
        )

    @app.post(
        "/v1/accounts",
        response_model=AccountResponse,
        status_code=201,
        dependencies=[Depends(require_admin)],
    )
    async def create_account(
        body: CreateAccountRequest, points: PointsServicer = Depends(get_servicer)
    ):
        """Create an account (signup is otherwise external)."""
        return await points.create_account(body.display_name)

    @app.get("/v1/health")
    async def health(points: PointsServicer = Depends(get_servicer)):
        return await points.health()

    return app
