"""Notification service (Mailgun email, Twilio SMS)."""
import logging

import httpx

from chillconnect.config import get_settings

logger = logging.getLogger(__name__)

MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"
TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


def email_configured() -> bool:
    s = get_settings()
    return bool(s.mailgun_api_key and s.mailgun_domain)


def sms_configured() -> bool:
    s = get_settings()
    return bool(s.twilio_account_sid and s.twilio_auth_token and s.twilio_from_phone_number)


def send_email(to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
    """Send email via Mailgun. Returns True if the API accepted it, False otherwise (including unconfigured)."""
    settings = get_settings()
    if not email_configured():
        logger.warning(
            "Email NOT SENT: to=%s subject=%s. MAILGUN_API_KEY=%s MAILGUN_DOMAIN=%s",
            to_email, subject,
            "set" if settings.mailgun_api_key else "MISSING",
            "set" if settings.mailgun_domain else "MISSING",
        )
        return False

    base = (settings.mailgun_base_url or MAILGUN_US_BASE).strip().rstrip("/")
    domain = settings.mailgun_domain.strip().lower()
    from_addr = (settings.mailgun_from_email or "").strip()
    from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
    if from_domain != domain:
        # Mailgun rejects senders outside the sending domain
        from_addr = f"noreply@{domain}"
    data = {
        "from": f"{settings.mailgun_from_name} <{from_addr}>",
        "to": to_email,
        "subject": subject,
        "text": text_content or "",
        "html": html_content or "",
    }
    try:
        with httpx.Client(timeout=10.0) as client:
            r = client.post(f"{base}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
            if r.status_code == 401 and base == MAILGUN_US_BASE:
                logger.info("Mailgun 401 with US endpoint. Retrying with EU endpoint")
                r = client.post(f"{MAILGUN_EU_BASE}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
    except httpx.HTTPError as e:
        logger.error("Mailgun request failed: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False
    if 200 <= r.status_code < 300:
        logger.info("Email sent: to=%s subject=%s", to_email, subject)
        return True
    logger.error("Mailgun API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
    return False


def send_sms(to_phone: str, body: str) -> bool:
    """Send SMS via Twilio's Messages API. Returns True if accepted."""
    settings = get_settings()
    if not sms_configured():
        logger.warning("SMS NOT SENT: to=%s. TWILIO_* settings missing", to_phone)
        return False
    url = f"{TWILIO_API_BASE}/Accounts/{settings.twilio_account_sid}/Messages.json"
    data = {"From": settings.twilio_from_phone_number, "To": to_phone, "Body": body}
    try:
        with httpx.Client(timeout=10.0) as client:
            r = client.post(url, auth=(settings.twilio_account_sid, settings.twilio_auth_token), data=data)
    except httpx.HTTPError as e:
        logger.error("Twilio request failed: to=%s error=%s: %s", to_phone, type(e).__name__, e)
        return False
    if 200 <= r.status_code < 300:
        logger.info("SMS sent: to=%s", to_phone)
        return True
    logger.error("Twilio API failed: status=%s to=%s body=%s", r.status_code, to_phone, r.text[:500])
    return False


def _wrap(title: str, body_html: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
      <h1 style="color: #007bff; margin: 0;">ChillConnect</h1>
      <h2 style="color: #333;">{title}</h2>
      {body_html}
      <p style="color: #999; font-size: 12px;">ChillConnect. You received this email because you have an account with us.</p>
    </div>
    """


_OTP_PURPOSE = {
    "EMAIL": "verify your email address",
    "PHONE": "verify your phone number",
    "LOGIN": "sign in",
    "PASSWORD_RESET": "reset your password",
}


def send_otp_email(to_email: str, code: str, purpose: str) -> bool:
    minutes = get_settings().otp_expire_minutes
    action = _OTP_PURPOSE.get(purpose, "continue")
    subject = f"[ChillConnect] Your verification code: {code}"
    text_content = f"Use {code} to {action}. It expires in {minutes} minutes."
    html_content = _wrap(
        "Your verification code",
        f"<p>Use this code to {action}:</p>"
        f'<p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{code}</p>'
        f"<p>It expires in {minutes} minutes. If you did not request it, ignore this email.</p>",
    )
    return send_email(to_email, subject, html_content, text_content=text_content)


def send_otp_sms(to_phone: str, code: str) -> bool:
    minutes = get_settings().otp_expire_minutes
    return send_sms(to_phone, f"Your ChillConnect code is {code}. It expires in {minutes} minutes.")


def send_welcome_email(to_email: str, first_name: str, role: str) -> bool:
    subject = "Welcome to ChillConnect"
    html_content = _wrap(
        f"Welcome, {first_name}!",
        f"<p>Your {role.lower()} account is ready.</p>"
        "<p>Verify your email with the code we sent to start booking.</p>",
    )
    return send_email(to_email, subject, html_content, text_content=f"Welcome to ChillConnect, {first_name}!")


def send_booking_confirmation_email(to_email: str, booking_id: int, start: str, booking_type: str, amount: int) -> bool:
    subject = f"[ChillConnect] Booking #{booking_id} requested"
    html_content = _wrap(
        "Booking requested",
        f"<p>Booking <strong>#{booking_id}</strong> ({booking_type.lower()}) starts {start}.</p>"
        f"<p><strong>{amount} tokens</strong> are held in escrow until the booking is completed or cancelled.</p>",
    )
    text_content = f"Booking #{booking_id} starts {start}. {amount} tokens held in escrow."
    return send_email(to_email, subject, html_content, text_content=text_content)


def send_token_purchase_email(to_email: str, amount: int, amount_paid: int, new_balance: int) -> bool:
    subject = "[ChillConnect] Tokens added to your wallet"
    html_content = _wrap(
        "Purchase complete",
        f"<p>{amount} tokens were added for INR {amount_paid}.</p><p>New balance: <strong>{new_balance}</strong> tokens.</p>",
    )
    return send_email(to_email, subject, html_content, text_content=f"{amount} tokens added. New balance: {new_balance}.")


def send_verification_decision_email(to_email: str, approved: bool, notes: str | None = None) -> bool:
    if approved:
        title = "Your account is verified"
        body = "<p>Your profile was approved. You can now accept bookings.</p>"
    else:
        title = "Verification was not approved"
        body = "<p>We could not approve your verification.</p>"
        if notes:
            body += f"<p>Reviewer notes: {notes}</p>"
    return send_email(to_email, f"[ChillConnect] {title}", _wrap(title, body), text_content=title)


def send_withdrawal_status_email(to_email: str, request_id: int, status: str, detail: str | None = None) -> bool:
    title = f"Withdrawal #{request_id} {status.lower()}"
    body = f"<p>Your withdrawal request #{request_id} is now <strong>{status.lower()}</strong>.</p>"
    if detail:
        body += f"<p>{detail}</p>"
    return send_email(to_email, f"[ChillConnect] {title}", _wrap(title, body), text_content=title)


def send_support_update_email(to_email: str, ticket_number: str, subject: str, update: str) -> bool:
    title = f"Support ticket #{ticket_number} updated"
    body = f"<p>Your ticket <strong>{subject}</strong> has an update:</p><p>{update}</p>"
    return send_email(to_email, f"[ChillConnect] {title}", _wrap(title, body), text_content=f"{title}: {update}")
