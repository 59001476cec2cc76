from datetime import datetime, timezone
from html import escape
from typing import Optional, Tuple

from portfolio_api.lib.contacts import ContactSubmission

_WRAPPER = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>{title}</title></head>
<body style="font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; margin: 0; padding: 0; background-color: #f5f7ff; color: #333;">
  <div style="max-width: 600px; margin: 20px auto; background: white; border-radius: 12px; overflow: hidden;">
    <div style="background: linear-gradient(135deg, #4f46e5 0%, #7c3aed 100%); padding: 32px 24px; text-align: center; color: white;">
      <h1 style="margin: 0; font-size: 24px;">{title}</h1>
      <p style="opacity: 0.9; margin: 8px 0 0; font-size: 14px;">{tagline}</p>
    </div>
    <div style="padding: 32px 24px;">{content}</div>
    <div style="background: #f8fafc; padding: 16px; text-align: center; border-top: 1px solid #e2e8f0; font-size: 12px; color: #94a3b8;">
      <p style="margin: 0;">&copy; {year} {owner}. All rights reserved.</p>
    </div>
  </div>
</body>
</html>
"""


def _first_name(name: str) -> str:
    parts = name.split()
    return parts[0] if parts else name


def _received_at(submission: ContactSubmission) -> str:
    created = submission.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created.strftime("%Y-%m-%d %H:%M UTC")


def render_admin_notification(submission: ContactSubmission, owner: str) -> Tuple[str, str, str]:
    """Subject, HTML and plain-text bodies for the site owner."""
    topic = submission.subject or "(no subject)"
    subject = f"New Contact: {topic}"

    content = f"""
      <div style="background: #f8fafc; border-radius: 8px; padding: 20px; border: 1px solid #e2e8f0;">
        <h3 style="margin: 0 0 4px 0; font-size: 18px; color: #1e293b;">{escape(submission.name)}</h3>
        <p style="margin: 0 0 16px; color: #64748b; font-size: 14px;">{escape(submission.email)}</p>
        <h4 style="margin: 0 0 12px 0; font-size: 16px; color: #334155;">{escape(topic)}</h4>
        <p style="margin: 0; color: #475569; line-height: 1.6; white-space: pre-line;">{escape(submission.message)}</p>
      </div>
      <div style="text-align: center; margin-top: 32px;">
        <a href="mailto:{escape(submission.email, quote=True)}" style="display: inline-block; background: #4f46e5; color: white; text-decoration: none; padding: 12px 24px; border-radius: 6px;">
          Reply to {escape(_first_name(submission.name))}
        </a>
        <p style="margin: 16px 0 0; font-size: 13px; color: #94a3b8;">This message was sent via your portfolio contact form</p>
      </div>
    """
    html = _WRAPPER.format(
        title="New Contact Form Submission",
        tagline=_received_at(submission),
        content=content,
        year=datetime.now(timezone.utc).year,
        owner=escape(owner),
    )

    text = (
        "You have a new contact form submission:\n\n"
        f"Name: {submission.name}\n"
        f"Email: {submission.email}\n"
        f"Subject: {topic}\n\n"
        f"Message:\n{submission.message}\n\n"
        "---\n"
        f"Reply to: {submission.email}\n"
        "Received via Portfolio Contact Form\n"
    )
    return subject, html, text


def render_confirmation(
    submission: ContactSubmission, owner: str, frontend_url: Optional[str] = None
) -> Tuple[str, str, str]:
    """Subject, HTML and plain-text bodies acknowledging receipt to the submitter."""
    topic = submission.subject or "your message"
    subject = f"Message Received - {submission.subject}" if submission.subject else "Message Received"
    portfolio_link = ""
    if frontend_url:
        portfolio_link = (
            f'<p style="margin: 0; font-size: 15px; color: #64748b;">In the meantime, feel free to explore my portfolio:</p>'
            f'<a href="{escape(frontend_url, quote=True)}" style="display: inline-block; margin-top: 12px; color: #4f46e5; text-decoration: none;">Visit My Portfolio &rarr;</a>'
        )

    content = f"""
      <div style="background: #f8fafc; border-radius: 8px; padding: 20px; border: 1px solid #e2e8f0;">
        <h3 style="margin: 0 0 16px 0; font-size: 16px; color: #4f46e5; text-transform: uppercase;">Your Message</h3>
        <p style="margin: 0 0 8px; font-weight: 500; color: #334155;">{escape(topic)}</p>
        <p style="margin: 0; color: #475569; line-height: 1.6; white-space: pre-line;">{escape(submission.message)}</p>
        <p style="margin: 16px 0 0; font-size: 14px; color: #64748b;">{_received_at(submission)}</p>
      </div>
      <div style="text-align: center; margin: 32px 0 24px;">
        <p style="margin: 0 0 16px; font-size: 15px; color: #475569; line-height: 1.6;">
          I've received your message and will get back to you as soon as possible.
          <span style="display: block; margin-top: 8px; font-weight: 500; color: #4f46e5;">Typical response time: 24-48 hours</span>
        </p>
        {portfolio_link}
      </div>
      <p style="margin: 0; font-size: 13px; color: #94a3b8; text-align: center;">This is an automated message. Please do not reply to this email.</p>
    """
    html = _WRAPPER.format(
        title="Message Received!",
        tagline=f"Thank you for reaching out, {escape(_first_name(submission.name))}!",
        content=content,
        year=datetime.now(timezone.utc).year,
        owner=escape(owner),
    )

    text = (
        f"Hi {submission.name},\n\n"
        "Thank you for reaching out! I've received your message and will get back to you "
        "as soon as possible.\n\n"
        "--- Message Details ---\n"
        f"Subject: {topic}\n"
        f"Date: {_received_at(submission)}\n\n"
        f"Your Message:\n{submission.message}\n\n"
        "---\n\n"
        "I typically respond within 24-48 hours.\n\n"
        f"Warm regards,\n{owner}\n\n"
        "--\nThis is an automated message. Please do not reply to this email.\n"
    )
    return subject, html, text
