"""
Trading Journal FastAPI App

Beginner guide:
- Serves the journal API: accounts, trades, dividends, portfolio, importer, summary, dashboard.
- CORS allows any localhost origin by default; set FRONTEND_ORIGINS (comma separated) to restrict it.
- Tables are created on startup; point DATABASE_URL at another database to move off local SQLite.
- Application errors (missing rows, bad input, unreadable uploads) come back as JSON with their status code.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .database import Base, engine
# Import models before calling create_all to ensure all tables are registered
from . import models  # noqa: F401
from .limiter import limiter
from .utils.error_handling import AppError, get_user_friendly_message, log_error

# Load environment variables from a .env file (if present)
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- FastAPI App Configuration ---
app = FastAPI(
    title="Trading Journal API",
    description="FastAPI backend for a personal trading journal (FIFO P&L, options spreads, broker CSV import).",
    version="1.0.0",
)

# --- Rate limiting ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- CORS configuration ---
frontend_origins = os.getenv("FRONTEND_ORIGINS", "")
allow_origins = [o.strip() for o in frontend_origins.split(",") if o.strip()]
if allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    # Default: allow any localhost HTTP origin (any port), suitable for Vite dev servers
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    log_error(exc, request_id=request.headers.get("x-request-id"))
    content = exc.to_dict()
    content["user_message"] = get_user_friendly_message(exc)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.get("/healthz", tags=["Meta"])
def healthz():
    return {"status": "ok"}


# --- Database Initialization ---
Base.metadata.create_all(bind=engine)

# --- Routers ---
from .routers import accounts, trades, dividends, portfolio, importer, summary, dashboard  # noqa: E402

app.include_router(accounts.router)
app.include_router(trades.router)
app.include_router(dividends.router)
app.include_router(portfolio.router)
app.include_router(importer.router)
app.include_router(summary.router)
app.include_router(dashboard.router)
