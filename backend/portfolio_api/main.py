# portfolio_api/main.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portfolio_api.core.db import close_pool, ping
from portfolio_api.core.mailer import get_mailer
from portfolio_api.core.settings import settings
from portfolio_api.routers.contact import router as contact_router
from portfolio_api.routers.health import router as health_router

log = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    mailer = get_mailer()
    if mailer is not None:
        # reports readiness only, a broken provider must not stop the API
        await asyncio.to_thread(mailer.verify)
    yield
    await close_pool()


app = FastAPI(title=settings.api_title, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

log.info(f"[main] allowed origins = {settings.allowed_origins}")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log.exception(f"[main] unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Something went wrong!",
            "error": str(exc) if settings.is_development else {},
        },
    )


@app.get("/")
async def read_root():
    mailer = get_mailer()
    return {
        "status": "ok",
        "service": settings.api_title,
        "environment": settings.environment,
        "database": "connected" if await ping() else "disconnected",
        "mail_provider": mailer.name if mailer else "none",
    }


# Routers
app.include_router(contact_router)
app.include_router(health_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
