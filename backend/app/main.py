"""
Land Development Portal API v1.0
FastAPI backend with async PostgreSQL, cookie sessions, role-based access over
the company → project → precinct → stage → lot hierarchy, and AI lot
extraction from subdivision plans (Gemini / Grok / OpenAI / Groq via litellm).
"""
import os
import logging
from contextlib import asynccontextmanager

# .env must be loaded before app.config reads the environment
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from app.db import db_configured, init_db
from app.services.logging_config import setup_logging
from app.services.llm_client import available_providers
from app.services.middleware import RateLimitMiddleware, RequestTimingMiddleware, SecurityHeadersMiddleware
from app.services.permissions import PermissionDenied

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("landdev-api")

APP_VERSION = "1.0.0"

# Startup validation
for var in ["DATABASE_URL", "JWT_SECRET_KEY"]:
    if not os.getenv(var):
        logger.warning(f"MISSING env var: {var} — running in dev mode")
for var in ["GEMINI_API_KEY", "XAI_API_KEY", "OPENAI_API_KEY", "GROQ_API_KEY"]:
    if not os.getenv(var):
        logger.info(f"Optional env var not set: {var}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info(f"Vision providers available: {available_providers() or 'none'}")
    yield


app = FastAPI(
    title="Land Development Portal API",
    version=APP_VERSION,
    description="Project management and AI plan extraction for land development",
    lifespan=lifespan,
)


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Request, exc: PermissionDenied):
    return JSONResponse(status_code=403, content={"detail": exc.message})


# ---------------------------------------------------------------------------
# CORS: the session is a cookie, so origins must be explicit
# ---------------------------------------------------------------------------
_cors_default = "http://localhost:5173"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RateLimitMiddleware)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from app.api.auth_routes import router as auth_router, theme_router
from app.api.company_routes import router as company_router
from app.api.project_routes import router as project_router
from app.api.precinct_routes import router as precinct_router
from app.api.stage_routes import router as stage_router
from app.api.lot_routes import router as lot_router
from app.api.stage_item_routes import approvals_router, invoices_router, lot_subgroups_router, permits_router
from app.api.role_routes import router as role_router
from app.api.user_routes import router as user_router
from app.api.access_routes import access_router, invitations_router
from app.api.activity_routes import router as activity_router
from app.api.settings_routes import custom_fields_router, preferences_router, pricing_router
from app.api.land_budget_routes import router as land_budget_router
from app.api.extraction_routes import router as extraction_router
from app.api.document_routes import router as document_router

app.include_router(auth_router)
app.include_router(theme_router)
app.include_router(company_router)
app.include_router(project_router)
app.include_router(precinct_router)
app.include_router(stage_router)
app.include_router(lot_router)
app.include_router(permits_router)
app.include_router(approvals_router)
app.include_router(invoices_router)
app.include_router(lot_subgroups_router)
app.include_router(role_router)
app.include_router(user_router)
app.include_router(access_router)
app.include_router(invitations_router)
app.include_router(activity_router)
app.include_router(custom_fields_router)
app.include_router(preferences_router)
app.include_router(pricing_router)
app.include_router(land_budget_router)
app.include_router(extraction_router)
app.include_router(document_router)


@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "version": APP_VERSION,
        "db_configured": db_configured(),
        "vision_providers": available_providers(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=False)
