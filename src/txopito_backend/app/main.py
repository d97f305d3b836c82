# src/txopito_backend/app/main.py
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load .env before any settings are read
load_dotenv()

from txopito_backend.app.core.logging import setup_logging
setup_logging()

from txopito_backend.app.api.routes.auth import router as auth_router
from txopito_backend.app.auth.deps import get_settings, provider_ready
from txopito_backend.app.auth.errors import AuthErrorKind, AuthFlowError
from txopito_backend.app.core.config import Settings, load_settings
from txopito_backend.app.schemas.auth import ErrorBody

_settings = load_settings()

app = FastAPI(title="TXOPITO IA Auth Proxy", version=_settings.version)

# CORS so the SPA dev server and deployed frontend can call the proxy
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Origin", "Accept"],
)

app.include_router(auth_router)


@app.exception_handler(AuthFlowError)
async def auth_flow_error_handler(_: Request, ex: AuthFlowError) -> JSONResponse:
    return JSONResponse(status_code=ex.kind.http_status, content=ex.to_body())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_: Request, ex: StarletteHTTPException) -> JSONResponse:
    # 401 missing bearer, 404 unknown provider/route: same {error, details} shape as flow errors
    message = ex.detail if isinstance(ex.detail, str) else "Request failed"
    body = ErrorBody(error=message, details=message)
    return JSONResponse(
        status_code=ex.status_code,
        content=body.model_dump(exclude_none=True),
        headers=getattr(ex, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, ex: RequestValidationError) -> JSONResponse:
    """A body without `code` is a broken callback relay, not a schema problem: 400 MalformedCallback."""
    fields = ", ".join(".".join(str(p) for p in err.get("loc", ())) for err in ex.errors())
    flow_error = AuthFlowError(AuthErrorKind.MALFORMED_CALLBACK, f"missing or invalid: {fields}")
    return JSONResponse(status_code=flow_error.kind.http_status, content=flow_error.to_body())


@app.get("/api/health")
def health(settings: Settings = Depends(get_settings)):
    """Pre-flight for the frontend: is the proxy up, and which providers can log in?"""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.version,
        "services": {
            "github_oauth": provider_ready(settings.credentials("github")),
            "google_oauth": provider_ready(settings.credentials("google")),
        },
    }
