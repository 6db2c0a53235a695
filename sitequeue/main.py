import logging
import math
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import config
from .allocator import Decision, TicketAllocator
from .clock import Clock
from .db import SqliteLedger
from .errors import HTTP_STATUS, ErrorKind, StoreUnavailableError
from .logging_config import audit_log, configure_logging, set_request_id
from .models import AllocationRequest, VerificationRequest
from .rate_limit import RateLimiter
from .verification import VerificationService

logger = logging.getLogger(__name__)


def client_address(request: Request, trust_proxy: bool = False) -> str:
    """Best-effort client network address."""
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else ""


def _error(kind: ErrorKind, message: str, **extra) -> JSONResponse:
    body = {"error": kind.value, "message": message}
    body.update(extra)
    return JSONResponse(status_code=HTTP_STATUS[kind], content=body)


def _throttled(limiter: RateLimiter, key: str, endpoint: str) -> Optional[JSONResponse]:
    result = limiter.check(key)
    if result.allowed:
        return None
    audit_log.rate_limit_exceeded(key, endpoint)
    return JSONResponse(
        status_code=429,
        content={"error": "RATE_LIMIT", "message": "Too many requests, slow down"},
        headers={"Retry-After": str(math.ceil(result.retry_after or 0))},
    )


def create_app(
    ledger: Optional[SqliteLedger] = None,
    clock: Optional[Clock] = None,
    bypass_geofence: Optional[bool] = None,
    allocate_rpm: Optional[int] = None,
    verify_rpm: Optional[int] = None,
    trust_proxy: Optional[bool] = None,
) -> FastAPI:
    app = FastAPI(title="Site Queue")

    ledger = ledger or SqliteLedger()
    clock = clock or Clock.for_zone(config.TIMEZONE)
    if bypass_geofence is None:
        bypass_geofence = config.geofence_bypassed()
    if trust_proxy is None:
        trust_proxy = config.TRUST_PROXY_HEADERS

    allocator = TicketAllocator(ledger, clock=clock, bypass_geofence=bypass_geofence, site_id=config.SITE_ID)
    verifier = VerificationService(ledger, clock=clock)
    allocate_limiter = RateLimiter(allocate_rpm or config.ALLOCATE_RPM)
    verify_limiter = RateLimiter(verify_rpm or config.VERIFY_RPM)

    app.state.ledger = ledger
    app.state.allocator = allocator
    app.state.verifier = verifier

    @app.on_event("startup")
    def _startup():
        configure_logging(config.LOG_LEVEL, json_format=config.LOG_JSON, log_file=config.LOG_FILE)
        failed = [name for name, ok in config.validate_config().items() if not ok]
        if failed:
            logger.warning("configuration checks failed: %s", ", ".join(failed))
        ledger.init_db()
        if bypass_geofence:
            audit_log.security_event("GEOFENCE_BYPASS_ACTIVE", severity="high")
            if config.is_production():
                logger.error("geofence bypass is enabled in production")

    @app.on_event("shutdown")
    def _shutdown():
        ledger.close_connection()

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        rid = set_request_id(request.headers.get("x-request-id") or None)
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response

    @app.exception_handler(RequestValidationError)
    async def _malformed_body(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
        return _error(ErrorKind.INVALID_FORMAT, "Malformed request body", fields=[f for f in fields if f])

    @app.exception_handler(StoreUnavailableError)
    async def _store_unavailable(request: Request, exc: StoreUnavailableError):
        logger.error("store unavailable: %s", exc)
        return _error(ErrorKind.STORE_UNAVAILABLE, "The ticket store is unavailable, try again shortly")

    @app.post("/api/queue/generate")
    def generate(req: AllocationRequest, request: Request):
        address = client_address(request, trust_proxy)
        throttled = _throttled(allocate_limiter, address, "generate")
        if throttled:
            return throttled

        outcome = allocator.allocate(
            req.identity_claim,
            req.latitude,
            req.longitude,
            req.accuracy,
            req.device_info,
            network_address=address,
        )
        if outcome.decision == Decision.ALLOCATED:
            return JSONResponse(status_code=201, content=outcome.to_dict())
        if outcome.decision == Decision.EXISTING:
            return JSONResponse(status_code=200, content=outcome.to_dict())
        headers = {"Retry-After": "1"} if outcome.error.retryable else None
        return JSONResponse(status_code=HTTP_STATUS[outcome.error], content=outcome.to_dict(), headers=headers)

    @app.post("/api/queue/verify")
    def verify(req: VerificationRequest, request: Request):
        throttled = _throttled(verify_limiter, client_address(request, trust_proxy), "verify")
        if throttled:
            return throttled

        outcome = verifier.verify(req.reference_id, mark_used=req.mark_used)
        if outcome.valid:
            return outcome.to_dict()
        return JSONResponse(status_code=HTTP_STATUS[outcome.error], content=outcome.to_dict())

    @app.get("/api/queue/stats")
    def stats():
        day = clock.today()
        return {
            "day": day.isoformat(),
            "sites": [s.to_dict() for s in verifier.stats(day)],
        }

    @app.get("/health")
    def health():
        ok = ledger.ping()
        return JSONResponse(
            status_code=200 if ok else 503,
            content={"status": "ok" if ok else "degraded", "store": ok, "env": config.ENV},
        )

    return app


app = create_app()
