import asyncio
import logging
from typing import Dict, Optional

from portfolio_api.core.mailer import Mailer
from portfolio_api.core.settings import Settings
from portfolio_api.lib.contacts import ContactSubmission
from portfolio_api.lib.email_templates import render_admin_notification, render_confirmation

log = logging.getLogger("uvicorn.error")


async def _send(mailer: Mailer, label: str, timeout: float, **message) -> bool:
    to = message["to"]
    try:
        await asyncio.wait_for(asyncio.to_thread(mailer.send, **message), timeout=timeout)
    except asyncio.TimeoutError:
        log.error(f"[contact] {label} email to {to} timed out after {timeout}s")
        return False
    except Exception as exc:
        # delivery problems never reach the caller
        log.error(f"[contact] {label} email to {to} failed: {exc}")
        return False
    log.info(f"[contact] {label} email sent to {to}")
    return True


async def dispatch_contact_emails(
    mailer: Optional[Mailer], submission: ContactSubmission, cfg: Settings
) -> Dict[str, bool]:
    """
    Send the admin notification and the submitter confirmation concurrently.
    Returns which of the two were delivered.
    """
    if mailer is None:
        log.info(f"[contact] no mail provider configured, skipping emails for {submission.id}")
        return {"admin": False, "confirmation": False}

    admin_to = cfg.admin_email or mailer.sender_email
    admin_subject, admin_html, admin_text = render_admin_notification(submission, cfg.admin_name)
    user_subject, user_html, user_text = render_confirmation(
        submission, cfg.admin_name, cfg.frontend_url
    )

    admin_ok, user_ok = await asyncio.gather(
        _send(
            mailer, "admin notification", cfg.mail_timeout_seconds,
            to=admin_to,
            subject=admin_subject,
            html=admin_html,
            text=admin_text,
            reply_to=submission.email,
        ),
        _send(
            mailer, "confirmation", cfg.mail_timeout_seconds,
            to=submission.email,
            subject=user_subject,
            html=user_html,
            text=user_text,
        ),
    )
    return {"admin": admin_ok, "confirmation": user_ok}
