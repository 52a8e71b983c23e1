"""Per-client request limits for public download endpoints."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from civiportal.core.config import get_settings


def _rate_key(request: Request) -> str:
    subject = request.headers.get("X-Auth-Subject")
    return f"user:{subject}" if subject else f"ip:{get_remote_address(request)}"


def export_limit() -> str:
    # Resolved on every request.
    return get_settings().export_rate_limit


limiter = Limiter(key_func=_rate_key, enabled=get_settings().rate_limit_enabled)
