# mailer.py
import logging
import os
import smtplib
import ssl
from email.message import EmailMessage

log = logging.getLogger("mailer")

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
MAIL_FROM = os.getenv("MAIL_FROM", "") or SMTP_USER

RESET_SUBJECT = "Reset Your Password - Dinherin.com"


def smtp_configured() -> bool:
    return bool(SMTP_HOST and SMTP_USER and SMTP_PASS)


def _send(to: str, subject: str, body: str) -> bool:
    if not smtp_configured():
        log.info("SMTP not configured; skipping mail to %s (%s)", to, subject)
        return False
    msg = EmailMessage()
    msg["From"] = MAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)
    ctx = ssl.create_default_context()
    with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as s:
        s.starttls(context=ctx)
        s.login(SMTP_USER, SMTP_PASS)
        s.send_message(msg)
    return True


def send_password_reset_email(to: str, name: str, reset_link: str) -> bool:
    body = f"""Hi {name or 'there'},

Someone asked to reset the password of your Dinherin account.
Open the link below within one hour to choose a new password:

{reset_link}

If it wasn't you, ignore this email; your password stays the same.
"""
    return _send(to, RESET_SUBJECT, body)
