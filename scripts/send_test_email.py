"""
Send a test email via Mailgun (and optionally a test SMS via Twilio) to check notification settings.
Usage: python scripts/send_test_email.py <to_email> [to_phone]
Example: python scripts/send_test_email.py you@example.com +919876543210
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chillconnect.config import get_settings
from chillconnect.services.notifications import email_configured, send_email, send_sms, sms_configured


def main():
    to_email = (sys.argv[1] if len(sys.argv) > 1 else "").strip()
    to_phone = (sys.argv[2] if len(sys.argv) > 2 else "").strip()
    if not to_email:
        print("Usage: python scripts/send_test_email.py <to_email> [to_phone]")
        sys.exit(1)

    settings = get_settings()
    if not email_configured():
        print("Mailgun is not configured. Set MAILGUN_API_KEY and MAILGUN_DOMAIN in .env")
        print(f"  MAILGUN_API_KEY: {'(set)' if settings.mailgun_api_key else '(missing)'}")
        print(f"  MAILGUN_DOMAIN: {repr(settings.mailgun_domain) if settings.mailgun_domain else '(missing)'}")
        sys.exit(1)

    print(f"Sending test email to: {to_email}")
    print(f"Domain: {settings.mailgun_domain}")
    ok = send_email(
        to_email,
        "[ChillConnect] Test email",
        "<p>This is a <strong>test email</strong> from ChillConnect. Mailgun is configured correctly.</p>",
        text_content="This is a test email from ChillConnect. Mailgun is configured correctly.",
    )
    if not ok:
        print("Failed: Mailgun returned an error.")
        print("  - Use the Private API key from Mailgun, not the domain name.")
        print("  - For EU accounts set MAILGUN_BASE_URL=https://api.eu.mailgun.net in .env")
        sys.exit(1)
    print("Success: test email sent. Check the inbox (and spam) for", to_email)

    if to_phone:
        if not sms_configured():
            print("Twilio is not configured. Set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_PHONE_NUMBER in .env")
            sys.exit(1)
        if send_sms(to_phone, "ChillConnect test SMS: Twilio is configured correctly."):
            print("Success: test SMS sent to", to_phone)
        else:
            print("Failed: Twilio returned an error. Check the sender number and that the recipient is verified on trial accounts.")
            sys.exit(1)


if __name__ == "__main__":
    main()
