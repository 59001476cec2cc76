# backend/portfolio_api/dependencies.py
import hmac
import logging

from fastapi import Header, HTTPException

from portfolio_api.core.settings import settings

log = logging.getLogger("uvicorn.error")


async def require_admin_token(authorization: str | None = Header(default=None)) -> None:
    """
    Gate for the submission listing endpoints.
    Open when ADMIN_API_TOKEN is unset; otherwise a matching bearer token is required.
    """
    expected = settings.admin_api_token
    if not expected:
        return
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            return
    log.warning("[auth] rejected request to admin endpoint")
    raise HTTPException(
        status_code=401,
        detail="Invalid or missing admin token",
        headers={"WWW-Authenticate": "Bearer"},
    )
