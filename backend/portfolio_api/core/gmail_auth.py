import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

log = logging.getLogger("uvicorn.error")

SCOPES = [
    "https://www.googleapis.com/auth/gmail.send",
]
TOKEN_URI = "https://oauth2.googleapis.com/token"


class TokenProvider:
    """Supplies OAuth2 credentials to the Gmail mailer."""

    def get_credentials(self) -> Credentials:
        raise NotImplementedError

    def force_refresh(self) -> Credentials:
        raise NotImplementedError


class FileTokenProvider(TokenProvider):
    """
    Credentials cached in a JSON token file.

    The file is read once; when it is missing the configured refresh token is
    used instead. Access tokens are refreshed when expired or absent, and every
    refresh is written back to the file. A configured refresh token always
    wins over the one stored in the file.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: Optional[str] = None,
        token_path: Optional[Path] = None,
        request_factory=Request,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.token_path = Path(token_path) if token_path else None
        self._request_factory = request_factory
        self._creds: Optional[Credentials] = None
        self._lock = threading.Lock()

    def _read_token_file(self) -> Optional[Dict[str, Any]]:
        if not self.token_path or not self.token_path.exists():
            return None
        try:
            info = json.loads(self.token_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning(f"[mail] could not read token file {self.token_path}: {exc}")
            return None
        if not isinstance(info, dict):
            log.warning(f"[mail] ignoring token file {self.token_path}: expected a JSON object")
            return None
        return info

    def _save(self, creds: Credentials) -> None:
        if not self.token_path:
            return
        try:
            self.token_path.parent.mkdir(parents=True, exist_ok=True)
            self.token_path.write_text(creds.to_json(), encoding="utf-8")
        except OSError as exc:
            log.warning(f"[mail] could not persist token file {self.token_path}: {exc}")

    def _load(self) -> Credentials:
        info = self._read_token_file() or {}
        stored = info.get("refresh_token")
        refresh_token = self.refresh_token or (stored if isinstance(stored, str) else None)
        if not refresh_token:
            raise RefreshError(
                "No refresh token available. Set GMAIL_REFRESH_TOKEN or run the authorize_gmail script."
            )
        info.update(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "token_uri": info.get("token_uri") or TOKEN_URI,
            }
        )
        try:
            return Credentials.from_authorized_user_info(info, scopes=SCOPES)
        except (ValueError, TypeError) as exc:
            # a malformed cached access token is dropped, the refresh token still works
            log.warning(f"[mail] ignoring cached token in {self.token_path}: {exc}")
        return Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=SCOPES,
        )

    def _refresh(self, creds: Credentials) -> None:
        log.info("[mail] refreshing Gmail access token")
        creds.refresh(self._request_factory())
        self._save(creds)

    def get_credentials(self) -> Credentials:
        with self._lock:
            if self._creds is None:
                self._creds = self._load()
            if not self._creds.valid:
                self._refresh(self._creds)
            return self._creds

    def force_refresh(self) -> Credentials:
        with self._lock:
            if self._creds is None:
                self._creds = self._load()
            self._refresh(self._creds)
            return self._creds
