import logging
import sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from orderauth.api import auth, invitations, profile
from orderauth.core.config import get_settings, lifespan
from orderauth.core.database import ping_database
from orderauth.core.redis import ping_redis
from orderauth.services.errors import AuthError, ResendCooldownActive

root = logging.getLogger()
if not root.handlers:  # don't double-add in reloads
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(h)

settings = get_settings()
root.setLevel(settings.log_level.upper())

app = FastAPI(title="Order app auth engine", version="0.1.0", lifespan=lifespan)

app.include_router(auth.router)
app.include_router(invitations.router)
app.include_router(profile.router)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    headers = None
    if isinstance(exc, ResendCooldownActive):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "action": exc.action},
        headers=headers,
    )


@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Report service status and confirm database and redis connectivity."""
    db_engine = getattr(request.app.state, "db_engine", None)
    redis_client = getattr(request.app.state, "redis", None)
    database_ok = db_engine is not None and await ping_database(db_engine)
    redis_ok = redis_client is not None and await ping_redis(redis_client)
    return {
        "status": "ok",
        "database": "ok" if database_ok else "error",
        "redis": "ok" if redis_ok else "error",
    }
