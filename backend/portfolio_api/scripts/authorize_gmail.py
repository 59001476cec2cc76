from pathlib import Path

from google_auth_oauthlib.flow import InstalledAppFlow

from portfolio_api.core.gmail_auth import SCOPES, TOKEN_URI
from portfolio_api.core.settings import settings


def authorize(port: int = 0):
    if not settings.gmail_client_id or not settings.gmail_client_secret:
        raise SystemExit("GMAIL_CLIENT_ID and GMAIL_CLIENT_SECRET must be set.")

    client_config = {
        "installed": {
            "client_id": settings.gmail_client_id,
            "client_secret": settings.gmail_client_secret,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": TOKEN_URI,
            "redirect_uris": ["http://localhost"],
        }
    }
    flow = InstalledAppFlow.from_client_config(client_config, scopes=SCOPES)
    # offline + consent so Google always returns a refresh token
    creds = flow.run_local_server(port=port, access_type="offline", prompt="consent")

    token_path = Path(settings.gmail_token_file)
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json(), encoding="utf-8")

    print(f"Token stored to {token_path}")
    print(f"Refresh token: {creds.refresh_token}")
    print("Set GMAIL_REFRESH_TOKEN to this value in your .env")


if __name__ == "__main__":
    authorize()
