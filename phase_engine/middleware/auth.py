import secrets

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from phase_engine.config import settings

# Authorization management is the only surface that needs a credential;
# student-facing reads are authenticated upstream by the platform gateway.
ADMIN_PREFIX = "/api/admin/"
ADMIN_HEADER = "X-Admin-Secret"


class AdminSecretMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        # Only admin endpoints are gated
        if not path.startswith(ADMIN_PREFIX):
            return await call_next(request)

        # No secret configured (local development): admin endpoints are open
        if not settings.admin_secret:
            return await call_next(request)

        provided = request.headers.get(ADMIN_HEADER, "")
        if provided and secrets.compare_digest(provided, settings.admin_secret):
            return await call_next(request)

        return JSONResponse(status_code=401, content={"detail": "Not authenticated"})
