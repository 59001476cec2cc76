import argparse
from datetime import datetime, timezone

from portfolio_api.core.mailer import MailDeliveryError, get_mailer
from portfolio_api.core.settings import settings


def send_test(to: str) -> int:
    mailer = get_mailer()
    if mailer is None:
        print("No mail provider configured. Set MAIL_PROVIDER and its credentials.")
        return 1

    print(f"Verifying {mailer.name} mailer...")
    if not mailer.verify():
        print("Verification failed, check the credentials in .env")
        return 1

    sent_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    html = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #1a73e8;">Hello!</h2>
        <p>This is a test email from {settings.api_title}.</p>
        <p style="color: #5f6368; font-size: 14px;">Sent at: {sent_at}<br>From: {mailer.sender_email}</p>
      </div>
    """
    try:
        message_id = mailer.send(
            to,
            f"Test from {settings.api_title}",
            html,
            reply_to=mailer.sender_email,
        )
    except MailDeliveryError as exc:
        print(f"Failed to send test email: {exc}")
        return 1

    print(f"Test email sent, message id: {message_id}")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send a test email through the configured provider.")
    parser.add_argument("to", help="recipient address")
    args = parser.parse_args()
    raise SystemExit(send_test(args.to))
