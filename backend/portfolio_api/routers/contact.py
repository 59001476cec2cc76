import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from portfolio_api.core.mailer import Mailer, get_mailer
from portfolio_api.core.settings import settings
from portfolio_api.dependencies import require_admin_token
from portfolio_api.lib.contact_validation import ContactRules, validate_contact
from portfolio_api.lib.contacts import get_submission, insert_submission, list_submissions
from portfolio_api.lib.notifications import dispatch_contact_emails

log = logging.getLogger("uvicorn.error")
router = APIRouter(prefix="/api", tags=["contact"])


def _fail(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@router.post("/contact", status_code=201)
async def create_contact(request: Request, mailer: Optional[Mailer] = Depends(get_mailer)):
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    data, errors = validate_contact(payload, ContactRules.from_settings(settings))
    if errors:
        log.info(f"[contact] rejected submission: {[e['param'] for e in errors]}")
        return JSONResponse(status_code=400, content={"success": False, "errors": errors})

    try:
        submission = await insert_submission(data.name, data.email, data.subject, data.message)
    except Exception:
        log.exception("[contact] failed to save submission")
        return _fail(500, "Failed to send message. Please try again later.")
    log.info(f"[contact] saved submission {submission.id}")

    sent = await dispatch_contact_emails(mailer, submission, settings)

    body = {
        "success": True,
        "message": "Message sent successfully!",
        "data": jsonable_encoder(submission),
    }
    if sent["admin"]:
        body["admin_notified"] = True
    if sent["confirmation"]:
        body["confirmation_sent"] = True
    return JSONResponse(status_code=201, content=body)


@router.get("/contacts", dependencies=[Depends(require_admin_token)])
async def list_contacts():
    try:
        items = await list_submissions()
    except Exception:
        log.exception("[contact] failed to list submissions")
        return _fail(500, "Failed to fetch contacts")
    return {"success": True, "count": len(items), "data": items}


@router.get("/contacts/{submission_id}", dependencies=[Depends(require_admin_token)])
async def get_contact(submission_id: str):
    try:
        item = await get_submission(submission_id)
    except Exception:
        log.exception(f"[contact] failed to fetch submission {submission_id}")
        return _fail(500, "Failed to fetch contact")
    if item is None:
        return _fail(404, "Contact not found")
    return {"success": True, "data": item}
