"""
Shared rate limiter instance for the trading journal API.

Usage in routers:
    from ..limiter import limiter, IMPORT_RATE_LIMIT
    from fastapi import Request

    @router.post("/upload")
    @limiter.limit(IMPORT_RATE_LIMIT)
    def upload(request: Request, ...):
        ...
"""
import os

from dotenv import load_dotenv
from slowapi import Limiter
from slowapi.util import get_remote_address

load_dotenv()

# Uploads parse whole files and recompute positions, so they get their own budget
IMPORT_RATE_LIMIT = os.getenv("IMPORT_RATE_LIMIT", "10/minute")

# Key on the client IP address. Behind a reverse proxy, ensure
# FORWARDED / X-Forwarded-For is trusted via trusted_proxies.
limiter = Limiter(key_func=get_remote_address)
