from typing import Any

import structlog
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from terms_gateway.config import settings
from terms_gateway.errors import (
    AuthError,
    DecodeError,
    GatewayError,
    RangeError,
    TransportError,
    UpstreamRejection,
)
from terms_gateway.log_config import configure_logging
from terms_gateway.models.terms_models import (
    ErrorResponse,
    HealthResponse,
    InsertResponse,
    TopRisingTerm,
)
from terms_gateway.warehouse.query_engine import TermsQueryEngine, query_engine
from terms_gateway.warehouse.range_filter import parse_bound

configure_logging(settings.log_level)
log = structlog.get_logger()

# ── Rate limiter ──────────────────────────────────────────────────────────────

def _get_caller_identity(request: Request) -> str:
    """
    Identify the caller for rate limiting.
    Priority:
      1. X-Forwarded-For first hop — set by the edge / load balancer
      2. direct remote addr fallback (local dev)
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=_get_caller_identity)

# ── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="Rising Terms Gateway",
    description="Service-account backed BigQuery access for top rising search terms",
    version="1.0.0",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins_list,
    allow_credentials=True,
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)

# ── Error mapping ─────────────────────────────────────────────────────────────
# Only bad date ranges are the caller's fault; everything else is ours or upstream's.

ERROR_STATUS: dict[type[GatewayError], int] = {
    RangeError:        400,
    AuthError:         500,
    TransportError:    502,
    UpstreamRejection: 502,
    DecodeError:       502,
}


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    status = ERROR_STATUS.get(type(exc), 500)
    log.error(
        "request_failed",
        path=request.url.path,
        error=type(exc).__name__,
        status=status,
        message=exc.message,
        query=exc.query,
    )
    body = ErrorResponse(detail=exc.message, query=exc.query)
    return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))


app.add_exception_handler(GatewayError, _gateway_error_handler)


def get_query_engine() -> TermsQueryEngine:
    return query_engine


# ── Top rising terms ──────────────────────────────────────────────────────────

@app.post("/top-rising-terms", response_model=InsertResponse)
@limiter.limit(f"{settings.rate_limit_per_hour}/hour")
async def insert_term(
    request: Request,
    body: TopRisingTerm,
    engine: TermsQueryEngine = Depends(get_query_engine),
):
    """Insert one top rising term row."""
    await engine.insert(body)
    return InsertResponse()


@app.get("/top-rising-terms", response_model=list[dict[str, Any]])
@limiter.limit(f"{settings.rate_limit_per_hour}/hour")
async def select_terms(
    request: Request,
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = Query(default=None),
    engine: TermsQueryEngine = Depends(get_query_engine),
):
    """Return rows for the requested weeks; defaults to the current week onward."""
    from_date = parse_bound(from_, "from")
    to_date = parse_bound(to, "to")
    return await engine.select(from_date, to_date)


# ── Health ────────────────────────────────────────────────────────────────────

@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="healthy",
        service="rising-terms-gateway",
    )


@app.get("/")
async def root():
    return {
        "service": "rising-terms-gateway",
        "docs": "/docs",
        "health": "/health",
        "terms": "/top-rising-terms",
    }
