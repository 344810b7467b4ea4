import html
import logging
import smtplib
from email.message import EmailMessage

import resend

from app.core.config import get_settings
from app.services.notifier import PurchaseConfirmation


logger = logging.getLogger(__name__)

settings = get_settings()


def _build_smtp_client():
    if not settings.SMTP_HOST:
        return None
    host = settings.SMTP_HOST
    port = settings.SMTP_PORT
    if settings.SMTP_USE_SSL:
        return smtplib.SMTP_SSL(host, port)
    client = smtplib.SMTP(host, port)
    if settings.SMTP_USE_TLS:
        client.starttls()
    return client


def _send_via_resend(to_email: str, subject: str, body: str) -> bool:
    api_key = settings.RESEND_API_KEY
    sender = settings.RESEND_FROM or settings.SMTP_FROM
    if not api_key or not sender:
        return False
    try:
        resend.api_key = api_key
        resend.Emails.send(
            {
                "from": sender,
                "to": to_email,
                "subject": subject,
                "html": body,
            }
        )
        logger.info("email sent via resend to=%s subject=%s", to_email, subject)
        return True
    except Exception as exc:
        logger.error("resend failed to=%s: %s", to_email, exc)
        return False


def _send_via_smtp(to_email: str, subject: str, body: str) -> bool:
    if not settings.SMTP_HOST or not settings.SMTP_FROM:
        return False

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content("Your payment was successful.")
    msg.add_alternative(body, subtype="html")

    client = _build_smtp_client()
    if not client:
        return False

    try:
        if settings.SMTP_USER and settings.SMTP_PASSWORD:
            client.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        client.send_message(msg)
        logger.info("email sent via smtp to=%s subject=%s", to_email, subject)
        return True
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("smtp failed to=%s: %s", to_email, exc)
        return False
    finally:
        try:
            client.quit()
        except (smtplib.SMTPException, OSError):
            pass


def _send_email(to_email: str, subject: str, body: str) -> bool:
    if _send_via_resend(to_email, subject, body):
        return True
    if _send_via_smtp(to_email, subject, body):
        return True
    logger.warning("no mail transport configured, email to=%s subject=%s not sent", to_email, subject)
    return False


def format_amount(amount: int) -> str:
    # Rupiah uses dots as thousands separators
    return "Rp " + f"{amount:,}".replace(",", ".")


def render_purchase_email(confirmation: PurchaseConfirmation) -> str:
    game_url = html.escape(f"{settings.APP_URL}/games/{confirmation.game_slug}")
    return f"""
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <h1>Payment Successful!</h1>
    <p>Hi <strong>{html.escape(confirmation.buyer_name)}</strong>,</p>
    <p>Thank you for your purchase! Your payment has been successfully processed.</p>
    <h3>Order Details:</h3>
    <ul>
      <li><strong>Game:</strong> {html.escape(confirmation.game_title)}</li>
      <li><strong>Amount:</strong> {format_amount(confirmation.amount)}</li>
      <li><strong>Order ID:</strong> {html.escape(confirmation.order_id)}</li>
      <li><strong>Payment Method:</strong> {html.escape(confirmation.payment_method or "-")}</li>
    </ul>
    <p>You can now play your game: <a href="{game_url}">{game_url}</a></p>
    <p>This is an automated email. Please do not reply.</p>
  </body>
</html>
"""


def send_purchase_confirmed_email(confirmation: PurchaseConfirmation) -> bool:
    subject = f"Payment Successful - {confirmation.game_title}"
    return _send_email(confirmation.buyer_email, subject, render_purchase_email(confirmation))
