# email_sender.py
"""
Handles sending the generated request PDF via email using SMTP.

Connects to the SMTP server from the Settings, authenticates, builds a
message with the PDF attached and sends it either to the row's own
recipient or, in override mode, to the configured override list.
"""
from __future__ import annotations
import smtplib
import ssl
import traceback
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from config import Settings

# ===========================================================
# --- Email Content Configuration ---
# ===========================================================

DEFAULT_SUBJECT = "Component Request Notification"
DEFAULT_BODY = "Hello!\nPlease see the attached PDF document."


def resolve_recipients(settings: Settings, row_recipient: str) -> list[str]:
    """Override mode redirects every mail to the fixed list; otherwise the row's own address is used."""
    if settings.email_override:
        return list(settings.override_recipients)
    return [row_recipient.strip()] if row_recipient and row_recipient.strip() else []


def build_message(settings: Settings, recipients: list[str], attachment_name: str, attachment: bytes) -> MIMEMultipart:
    message = MIMEMultipart()
    message["From"] = formataddr((settings.app_title, settings.email_sender))
    message["To"] = ", ".join(recipients)
    message["Subject"] = DEFAULT_SUBJECT
    message.attach(MIMEText(DEFAULT_BODY, "plain"))

    part = MIMEBase("application", "pdf")
    part.set_payload(attachment)
    encoders.encode_base64(part)
    part.add_header("Content-Disposition", "attachment", filename=attachment_name)
    message.attach(part)
    return message


def send_email_with_attachment(settings: Settings, recipients: list[str], attachment_name: str, attachment: bytes) -> bool:
    """
    Sends one email with the PDF attached to all recipients.

    Args:
        settings (Settings): SMTP server, credentials and sender display name.
        recipients (list[str]): Literal addresses to send to.
        attachment_name (str): File name shown for the attachment (e.g. 'Request-REQ-100.pdf').
        attachment (bytes): The PDF content.

    Returns:
        bool: True if the email was sent successfully, False otherwise.
    """
    # --- Input Validation ---
    invalid = [address for address in recipients if '@' not in address]
    if not recipients or invalid:
        print(f"  [ERROR] Invalid recipient email address(es): {invalid or recipients}")
        return False
    if not settings.email_sender or not settings.email_password:
        print("  [ERROR] Email sender credentials (EMAIL_SENDER, EMAIL_PASSWORD) not configured.")
        return False

    try:
        message = build_message(settings, recipients, attachment_name, attachment)
    except (TypeError, ValueError) as e:
        print(f"  [ERROR] Failed to create email message structure: {e}")
        return False

    # --- Send the Email ---
    server = None
    try:
        context = ssl.create_default_context()
        print(f"  [INFO] Connecting to SMTP server {settings.smtp_server} on port {settings.smtp_port}...")
        if settings.email_use_ssl:
            server = smtplib.SMTP_SSL(settings.smtp_server, settings.smtp_port, context=context)
        else:
            server = smtplib.SMTP(settings.smtp_server, settings.smtp_port)
            server.starttls(context=context)

        server.login(settings.email_sender, settings.email_password)
        server.sendmail(settings.email_sender, recipients, message.as_string())
        print(f"  [SUCCESS] Email sent to {', '.join(recipients)}.")
        return True

    except smtplib.SMTPAuthenticationError:
        print(f"  [ERROR] SMTP Authentication failed for {settings.email_sender}.")
        print("  >>> Suggestion: Verify EMAIL_SENDER and EMAIL_PASSWORD in .env (use an App Password with Gmail 2FA).")
        return False
    except smtplib.SMTPConnectError as e:
        print(f"  [ERROR] Could not connect to SMTP server {settings.smtp_server}:{settings.smtp_port}. Error: {e}")
        return False
    except smtplib.SMTPServerDisconnected:
        print("  [ERROR] SMTP server disconnected unexpectedly.")
        return False
    except ssl.SSLError as e:
        print(f"  [ERROR] SSL Error occurred: {e}")
        print(f"  >>> Suggestion: Verify SMTP port ({settings.smtp_port}) matches SSL/TLS requirement.")
        return False
    except (smtplib.SMTPException, OSError) as e:
        print(f"  [ERROR] An unexpected error occurred sending email: {e}")
        traceback.print_exc()
        return False
    finally:
        if server:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError) as quit_e:
                print(f"  [WARNING] Error closing SMTP connection: {quit_e}")
