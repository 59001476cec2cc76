import base64
import email
import json
import smtplib
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import httplib2
import pytest
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError

from portfolio_api.core.gmail_auth import FileTokenProvider, TokenProvider
from portfolio_api.core.mailer import (
    GmailMailer,
    MailConfigError,
    MailDeliveryError,
    Mailer,
    RetryPolicy,
    SmtpMailer,
    build_mailer,
    build_message,
    get_mailer,
    reset_mailer,
)
from portfolio_api.core.settings import Settings


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b'{"error": {"message": "nope"}}')


class FakeTokens(TokenProvider):
    def __init__(self, refresh_error=None):
        self.gets = 0
        self.refreshes = 0
        self.refresh_error = refresh_error

    def get_credentials(self):
        self.gets += 1
        return f"creds-{self.refreshes}"

    def force_refresh(self):
        if self.refresh_error:
            raise self.refresh_error
        self.refreshes += 1
        return f"creds-{self.refreshes}"


class FakeGmail:
    """Mimics service.users().messages().send(...).execute()."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def users(self):
        return self

    def messages(self):
        return self

    def send(self, userId, body):
        self.calls.append((userId, body))
        return self

    def execute(self):
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _gmail(outcomes, tokens=None, policy=None):
    service = FakeGmail(outcomes)
    sleeps = []
    mailer = GmailMailer(
        tokens or FakeTokens(),
        sender_email="owner@example.com",
        sender_name="Portfolio Admin",
        retry_policy=policy,
        service_factory=lambda creds: service,
        sleep=sleeps.append,
    )
    return mailer, service, sleeps


def test_build_message_sets_optional_headers():
    msg = build_message(
        "Owner <owner@example.com>", "ada@example.com", "Hi", "<p>hi</p>",
        text="hi", cc="cc@example.com", bcc="bcc@example.com", reply_to="reply@example.com",
    )
    assert msg["To"] == "ada@example.com"
    assert msg["Cc"] == "cc@example.com"
    assert msg["Bcc"] == "bcc@example.com"
    assert msg["Reply-To"] == "reply@example.com"
    assert [p.get_content_type() for p in msg.get_payload()] == ["text/plain", "text/html"]


def test_gmail_sends_base64url_message():
    mailer, service, _ = _gmail([{"id": "abc123"}])

    message_id = mailer.send("ada@example.com", "Hello", "<p>hi</p>", reply_to="me@example.com")

    assert message_id == "abc123"
    user_id, body = service.calls[0]
    assert user_id == "me"
    raw = body["raw"]
    parsed = email.message_from_bytes(base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)))
    assert parsed["To"] == "ada@example.com"
    assert parsed["Reply-To"] == "me@example.com"
    assert "Portfolio Admin" in parsed["From"]


def test_gmail_retries_once_after_401():
    tokens = FakeTokens()
    mailer, service, sleeps = _gmail(
        [_http_error(401), {"id": "ok"}], tokens, RetryPolicy(max_attempts=2, backoff_seconds=0.25)
    )

    assert mailer.send("ada@example.com", "Hello", "<p>hi</p>") == "ok"
    assert tokens.refreshes == 1
    assert sleeps == [0.25]
    assert len(service.calls) == 2


def test_gmail_gives_up_after_max_attempts():
    tokens = FakeTokens()
    mailer, service, _ = _gmail([_http_error(401), _http_error(401)], tokens)

    with pytest.raises(MailDeliveryError):
        mailer.send("ada@example.com", "Hello", "<p>hi</p>")
    assert tokens.refreshes == 1
    assert len(service.calls) == 2


def test_gmail_backoff_grows():
    policy = RetryPolicy(max_attempts=3, backoff_seconds=0.5)
    mailer, _, sleeps = _gmail([_http_error(401), _http_error(401), {"id": "ok"}], policy=policy)

    mailer.send("ada@example.com", "Hello", "<p>hi</p>")

    assert sleeps == [0.5, 1.0]


def test_gmail_does_not_retry_other_errors():
    tokens = FakeTokens()
    mailer, service, _ = _gmail([_http_error(500)], tokens)

    with pytest.raises(MailDeliveryError):
        mailer.send("ada@example.com", "Hello", "<p>hi</p>")
    assert tokens.refreshes == 0
    assert len(service.calls) == 1


def test_gmail_refresh_failure_is_delivery_error():
    tokens = FakeTokens(refresh_error=RefreshError("revoked"))
    mailer, _, _ = _gmail([_http_error(401)], tokens)

    with pytest.raises(MailDeliveryError):
        mailer.send("ada@example.com", "Hello", "<p>hi</p>")


class StaticTokens(FakeTokens):
    def get_credentials(self):
        self.gets += 1
        return Credentials(token=f"tok-{self.refreshes}")


def test_gmail_client_does_not_refresh_on_its_own(monkeypatch):
    requests_sent = []

    def _unauthorized(self, uri, method="GET", body=None, headers=None, **kwargs):
        requests_sent.append((method, uri))
        resp = httplib2.Response({"status": 401, "content-type": "application/json"})
        return resp, b'{"error": {"code": 401, "message": "invalid credentials"}}'

    monkeypatch.setattr(httplib2.Http, "request", _unauthorized)
    tokens = StaticTokens()
    mailer = GmailMailer(
        tokens,
        sender_email="owner@example.com",
        retry_policy=RetryPolicy(max_attempts=2, backoff_seconds=0),
        sleep=lambda seconds: None,
    )

    with pytest.raises(MailDeliveryError):
        mailer.send("ada@example.com", "Hello", "<p>hi</p>")

    assert len(requests_sent) == 2
    assert tokens.refreshes == 1


class BrokenTokens(FakeTokens):
    def get_credentials(self):
        raise ValueError("time data 'garbage' does not match format")


def test_gmail_verify_is_never_fatal():
    mailer, _, _ = _gmail([], BrokenTokens())

    assert mailer.verify() is False


def test_gmail_verify_with_unusable_token_file(tmp_path, monkeypatch):
    (tmp_path / "token.json").write_text(
        json.dumps({"refresh_token": "rt", "token": "x", "expiry": "garbage"})
    )

    def _revoked(self, request):
        raise RefreshError("invalid_grant")

    monkeypatch.setattr(Credentials, "refresh", _revoked)
    provider = FileTokenProvider(
        client_id="client-id",
        client_secret="client-secret",
        token_path=tmp_path / "token.json",
        request_factory=lambda: None,
    )
    mailer = GmailMailer(provider, sender_email="owner@example.com")

    assert mailer.verify() is False


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        self.closed = False
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True

    def ehlo(self):
        pass

    def has_extn(self, name):
        return name == "starttls"

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, msg, from_addr=None):
        self.sent.append((msg, from_addr))

    def noop(self):
        return (250, b"OK")

    def close(self):
        self.closed = True


class DisconnectingSMTP(FakeSMTP):
    def send_message(self, msg, from_addr=None):
        raise smtplib.SMTPServerDisconnected("gone")


def _smtp(factory=FakeSMTP):
    FakeSMTP.instances.clear()
    return SmtpMailer(
        host="smtp.example.com",
        port=587,
        sender_email="owner@example.com",
        sender_name="Portfolio Admin",
        user="owner@example.com",
        password="app-password",
        smtp_factory=factory,
    )


def test_smtp_sends_with_starttls_and_login():
    mailer = _smtp()

    message_id = mailer.send("ada@example.com", "Hello", "<p>hi</p>", reply_to="me@example.com")

    server = FakeSMTP.instances[0]
    assert server.started_tls is True
    assert server.logged_in == ("owner@example.com", "app-password")
    msg, from_addr = server.sent[0]
    assert from_addr == "owner@example.com"
    assert msg["Reply-To"] == "me@example.com"
    assert msg["Message-ID"] == message_id
    assert server.closed is True


def test_smtp_failure_is_delivery_error():
    mailer = _smtp(DisconnectingSMTP)

    with pytest.raises(MailDeliveryError):
        mailer.send("ada@example.com", "Hello", "<p>hi</p>")


def test_smtp_verify():
    assert _smtp().verify() is True


def test_build_mailer_auto_prefers_gmail():
    cfg = Settings(
        MAIL_PROVIDER="auto",
        GMAIL_CLIENT_ID="id",
        GMAIL_CLIENT_SECRET="secret",
        GMAIL_USER_EMAIL="owner@gmail.com",
        SMTP_HOST="smtp.example.com",
        GMAIL_TOKEN_FILE="",
    )
    mailer = build_mailer(cfg)
    assert isinstance(mailer, GmailMailer)
    assert mailer.sender_email == "owner@gmail.com"


def test_build_mailer_auto_falls_back_to_smtp():
    cfg = Settings(
        MAIL_PROVIDER="auto",
        GMAIL_CLIENT_ID=None,
        GMAIL_CLIENT_SECRET=None,
        GMAIL_USER_EMAIL=None,
        SMTP_HOST="smtp.example.com",
        SMTP_PORT=2525,
        SMTP_USER="owner@example.com",
    )
    mailer = build_mailer(cfg)
    assert isinstance(mailer, SmtpMailer)
    assert mailer.port == 2525


def test_build_mailer_none():
    assert build_mailer(Settings(MAIL_PROVIDER="none")) is None


def test_build_mailer_gmail_requires_credentials():
    cfg = Settings(
        MAIL_PROVIDER="gmail",
        GMAIL_CLIENT_ID=None,
        GMAIL_CLIENT_SECRET=None,
        GMAIL_USER_EMAIL=None,
    )
    with pytest.raises(MailConfigError) as exc:
        build_mailer(cfg)
    assert "GMAIL_CLIENT_ID" in str(exc.value)


def test_build_mailer_unknown_provider():
    with pytest.raises(MailConfigError):
        build_mailer(Settings(MAIL_PROVIDER="carrier-pigeon"))


def test_get_mailer_builds_once_under_concurrent_first_use(monkeypatch):
    builds = []
    lock = threading.Lock()

    def _slow_build(cfg):
        with lock:
            builds.append(cfg)
        time.sleep(0.05)
        return Mailer("owner@example.com")

    monkeypatch.setattr("portfolio_api.core.mailer.build_mailer", _slow_build)
    reset_mailer()
    try:
        with ThreadPoolExecutor(max_workers=8) as pool:
            mailers = list(pool.map(lambda _: get_mailer(), range(8)))
    finally:
        reset_mailer()

    assert len(builds) == 1
    assert all(m is mailers[0] for m in mailers)
