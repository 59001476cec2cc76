# portfolio_api/routers/health.py
from fastapi import APIRouter
from portfolio_api.core.db import db_conn
from portfolio_api.lib.contacts import table_exists

router = APIRouter(prefix="/health", tags=["health"])

@router.get("")
async def health_root():
    return {"status": "ok"}

@router.get("/db")
async def health_db():
    async with db_conn() as (conn, cur):
        await cur.execute("SELECT current_database(), current_user, version()")
        db_name, db_user, pg_version = await cur.fetchone()

    return {
        "ok": True,
        "database": db_name,
        "user": db_user,
        "server_version": pg_version,
        "tables": {
            "contact_submissions": await table_exists(),
        },
    }
