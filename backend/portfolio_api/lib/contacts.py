from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel

from portfolio_api.core.db import db_conn

_schema_checked = False

_COLUMNS = "id::text, name, email, subject, message, created_at"


class ContactSubmission(BaseModel):
    id: str
    name: str
    email: str
    subject: Optional[str] = None
    message: str
    created_at: datetime


def _row_to_submission(row: Tuple) -> ContactSubmission:
    return ContactSubmission(
        id=row[0],
        name=row[1],
        email=row[2],
        subject=row[3],
        message=row[4],
        created_at=row[5],
    )


async def _ensure_contact_schema():
    global _schema_checked
    if _schema_checked:
        return
    async with db_conn() as (conn, cur):
        await cur.execute(
            """
            CREATE TABLE IF NOT EXISTS contact_submissions (
              id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
              name TEXT NOT NULL,
              email TEXT NOT NULL,
              subject TEXT,
              message TEXT NOT NULL,
              created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        await cur.execute(
            "CREATE INDEX IF NOT EXISTS contact_submissions_created_idx "
            "ON contact_submissions (created_at DESC)"
        )
        await conn.commit()
    _schema_checked = True


async def insert_submission(
    name: str, email: str, subject: Optional[str], message: str
) -> ContactSubmission:
    await _ensure_contact_schema()
    async with db_conn() as (conn, cur):
        await cur.execute(
            f"""
            INSERT INTO contact_submissions (name, email, subject, message)
            VALUES (%s, %s, %s, %s)
            RETURNING {_COLUMNS}
            """,
            (name, email, subject, message),
        )
        row = await cur.fetchone()
        await conn.commit()
    if not row:
        raise RuntimeError("insert returned no row")
    return _row_to_submission(row)


async def list_submissions() -> List[ContactSubmission]:
    await _ensure_contact_schema()
    async with db_conn() as (conn, cur):
        await cur.execute(
            f"SELECT {_COLUMNS} FROM contact_submissions ORDER BY created_at DESC, id DESC"
        )
        rows = await cur.fetchall()
    return [_row_to_submission(r) for r in rows]


async def get_submission(submission_id: str) -> Optional[ContactSubmission]:
    await _ensure_contact_schema()
    # compare as text so malformed ids are simply not found
    async with db_conn() as (conn, cur):
        await cur.execute(
            f"SELECT {_COLUMNS} FROM contact_submissions WHERE id::text = %s",
            (submission_id.strip().lower(),),
        )
        row = await cur.fetchone()
    return _row_to_submission(row) if row else None


async def table_exists() -> bool:
    async with db_conn() as (conn, cur):
        await cur.execute(
            """
            SELECT EXISTS (
              SELECT 1 FROM information_schema.tables
              WHERE table_schema='public' AND table_name='contact_submissions'
            )
            """
        )
        row = await cur.fetchone()
    return bool(row and row[0])
