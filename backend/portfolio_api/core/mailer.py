# portfolio_api/core/mailer.py
import base64
import logging
import smtplib
import threading
import time
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from pathlib import Path
from typing import Callable, List, Optional

import google_auth_httplib2
import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from portfolio_api.core.gmail_auth import FileTokenProvider, TokenProvider
from portfolio_api.core.settings import Settings, settings

log = logging.getLogger("uvicorn.error")


class MailDeliveryError(Exception):
    pass


class MailConfigError(Exception):
    pass


@dataclass(frozen=True)
class RetryPolicy:
    # max_attempts counts the first try, so 2 means one retry
    max_attempts: int = 2
    backoff_seconds: float = 0.5

    def delay(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** (attempt - 1))


def build_message(
    sender: str,
    to: str,
    subject: str,
    html: str,
    text: Optional[str] = None,
    cc: Optional[str] = None,
    bcc: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to
    msg["Date"] = formatdate(localtime=False)
    msg["Message-ID"] = make_msgid()
    if cc:
        msg["Cc"] = cc
    if bcc:
        msg["Bcc"] = bcc
    if reply_to:
        msg["Reply-To"] = reply_to
    if text:
        msg.attach(MIMEText(text, "plain", "utf-8"))
    msg.attach(MIMEText(html, "html", "utf-8"))
    return msg


class Mailer:
    name = "base"

    def __init__(self, sender_email: str, sender_name: Optional[str] = None):
        self.sender_email = sender_email
        self.sender_name = sender_name

    @property
    def sender(self) -> str:
        if self.sender_name:
            return formataddr((self.sender_name, self.sender_email))
        return self.sender_email

    def send(
        self,
        to: str,
        subject: str,
        html: str,
        *,
        text: Optional[str] = None,
        cc: Optional[str] = None,
        bcc: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> str:
        """Deliver one message and return its id. Raises MailDeliveryError."""
        raise NotImplementedError

    def verify(self) -> bool:
        return True


class SmtpMailer(Mailer):
    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        sender_email: str,
        sender_name: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 15.0,
        smtp_factory: Optional[Callable[..., smtplib.SMTP]] = None,
    ):
        super().__init__(sender_email, sender_name)
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout
        if smtp_factory is None:
            smtp_factory = smtplib.SMTP_SSL if port == 465 else smtplib.SMTP
        self._smtp_factory = smtp_factory

    def _connect(self) -> smtplib.SMTP:
        server = self._smtp_factory(self.host, self.port, timeout=self.timeout)
        try:
            if not isinstance(server, smtplib.SMTP_SSL):
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
            if self.user and self.password:
                server.login(self.user, self.password)
        except Exception:
            server.close()
            raise
        return server

    def send(self, to, subject, html, *, text=None, cc=None, bcc=None, reply_to=None) -> str:
        msg = build_message(self.sender, to, subject, html, text, cc, bcc, reply_to)
        try:
            with self._connect() as server:
                # send_message collects To/Cc/Bcc and strips the Bcc header
                server.send_message(msg, from_addr=self.sender_email)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(f"SMTP delivery to {to} failed: {exc}") from exc
        log.info(f"[mail] sent via smtp to {to}")
        return msg["Message-ID"]

    def verify(self) -> bool:
        try:
            with self._connect() as server:
                server.noop()
        except Exception as exc:
            log.warning(f"[mail] SMTP verification failed: {exc}")
            return False
        log.info("[mail] SMTP server is ready to send emails")
        return True


def _gmail_service(creds):
    # refreshes and 401 retries belong to the token provider and RetryPolicy
    http = google_auth_httplib2.AuthorizedHttp(creds, http=httplib2.Http(), max_refresh_attempts=0)
    return build("gmail", "v1", http=http, cache_discovery=False)


class GmailMailer(Mailer):
    """Sends through the Gmail API, retrying 401s after a forced token refresh."""

    name = "gmail"

    def __init__(
        self,
        token_provider: TokenProvider,
        sender_email: str,
        sender_name: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        service_factory: Callable = _gmail_service,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(sender_email, sender_name)
        self.token_provider = token_provider
        self.retry_policy = retry_policy or RetryPolicy()
        self._service_factory = service_factory
        self._sleep = sleep

    def send(self, to, subject, html, *, text=None, cc=None, bcc=None, reply_to=None) -> str:
        msg = build_message(self.sender, to, subject, html, text, cc, bcc, reply_to)
        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii").rstrip("=")

        attempt = 1
        while True:
            try:
                creds = self.token_provider.get_credentials()
                service = self._service_factory(creds)
                resp = service.users().messages().send(userId="me", body={"raw": raw}).execute()
            except HttpError as exc:
                status = getattr(exc.resp, "status", None)
                if status == 401 and attempt < self.retry_policy.max_attempts:
                    log.warning(f"[mail] Gmail answered 401, refreshing token (attempt {attempt})")
                    try:
                        self.token_provider.force_refresh()
                    except GoogleAuthError as refresh_exc:
                        raise MailDeliveryError(f"Gmail token refresh failed: {refresh_exc}") from refresh_exc
                    self._sleep(self.retry_policy.delay(attempt))
                    attempt += 1
                    continue
                raise MailDeliveryError(f"Gmail delivery to {to} failed: {exc}") from exc
            except GoogleAuthError as exc:
                raise MailDeliveryError(f"Gmail authentication failed: {exc}") from exc

            message_id = resp.get("id", "")
            log.info(f"[mail] sent via gmail to {to} id={message_id}")
            return message_id

    def verify(self) -> bool:
        try:
            self.token_provider.get_credentials()
        except Exception as exc:
            log.warning(f"[mail] Gmail verification failed: {exc}")
            return False
        log.info("[mail] Gmail API is ready to send emails")
        return True


def _resolve_provider(cfg: Settings) -> str:
    provider = (cfg.mail_provider or "auto").strip().lower()
    if provider != "auto":
        return provider
    if cfg.gmail_client_id and cfg.gmail_client_secret and cfg.gmail_user_email:
        return "gmail"
    if cfg.smtp_host:
        return "smtp"
    return "none"


def build_mailer(cfg: Settings) -> Optional[Mailer]:
    provider = _resolve_provider(cfg)
    if provider == "none":
        return None

    if provider == "gmail":
        missing: List[str] = [
            name
            for name, value in (
                ("GMAIL_CLIENT_ID", cfg.gmail_client_id),
                ("GMAIL_CLIENT_SECRET", cfg.gmail_client_secret),
                ("GMAIL_USER_EMAIL", cfg.gmail_user_email),
            )
            if not value
        ]
        if missing:
            raise MailConfigError(f"Missing required environment variables: {', '.join(missing)}")
        tokens = FileTokenProvider(
            client_id=cfg.gmail_client_id,
            client_secret=cfg.gmail_client_secret,
            refresh_token=cfg.gmail_refresh_token,
            token_path=Path(cfg.gmail_token_file) if cfg.gmail_token_file else None,
        )
        return GmailMailer(
            tokens,
            sender_email=cfg.gmail_user_email,
            sender_name=cfg.admin_name,
            retry_policy=RetryPolicy(
                max_attempts=cfg.gmail_retry_attempts,
                backoff_seconds=cfg.gmail_retry_backoff_seconds,
            ),
        )

    if provider == "smtp":
        sender = cfg.smtp_user or cfg.admin_email
        if not cfg.smtp_host or not sender:
            raise MailConfigError("SMTP_HOST and SMTP_USER (or ADMIN_EMAIL) are required for MAIL_PROVIDER=smtp")
        return SmtpMailer(
            host=cfg.smtp_host,
            port=cfg.smtp_port,
            sender_email=sender,
            sender_name=cfg.admin_name,
            user=cfg.smtp_user,
            password=cfg.smtp_pass,
            timeout=cfg.mail_timeout_seconds,
        )

    raise MailConfigError(f"Unknown MAIL_PROVIDER: {provider}")


_mailer: Optional[Mailer] = None
_mailer_built = False
_mailer_lock = threading.Lock()


def get_mailer() -> Optional[Mailer]:
    """Process-wide mailer, built on first use. None when mail is disabled or misconfigured."""
    global _mailer, _mailer_built
    if _mailer_built:
        return _mailer
    with _mailer_lock:
        if not _mailer_built:
            try:
                _mailer = build_mailer(settings)
            except MailConfigError as exc:
                log.error(f"[mail] mailer disabled: {exc}")
                _mailer = None
            _mailer_built = True
            log.info(f"[mail] provider = {_mailer.name if _mailer else 'none'}")
    return _mailer


def reset_mailer() -> None:
    global _mailer, _mailer_built
    with _mailer_lock:
        _mailer = None
        _mailer_built = False
