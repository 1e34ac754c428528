"""
SMTP mail sender.

Email bodies are Jinja2 templates under templates/email/.
"""

import logging
import os
import smtplib
import ssl
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import List, Optional, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape

import config

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render(template_name: str, **context) -> str:
    """Render templates/email/<template_name>.html"""
    return env.get_template(f"email/{template_name}.html").render(**context)


def build_message(
    to: Union[str, List[str]],
    subject: str,
    html_content: str,
    from_address: str,
    attachments: Optional[List[str]] = None,
) -> MIMEMultipart:
    msg = MIMEMultipart("mixed")
    msg["Subject"] = subject
    msg["From"] = from_address
    msg["To"] = to if isinstance(to, str) else ", ".join(to)

    msg.attach(MIMEText(html_content, "html"))

    for path in attachments or []:
        with open(path, "rb") as f:
            part = MIMEBase("application", "octet-stream")
            part.set_payload(f.read())
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", f'attachment; filename="{os.path.basename(path)}"')
        msg.attach(part)

    return msg


def _connect() -> smtplib.SMTP:
    if config.SMTP_PORT == 465:
        context = ssl.create_default_context()
        return smtplib.SMTP_SSL(config.SMTP_HOST, config.SMTP_PORT, context=context, timeout=30)
    return smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=30)


def send_mail(
    to: Union[str, List[str]],
    subject: str,
    html_content: str,
    attachments: Optional[List[str]] = None,
    from_address: Optional[str] = None,
) -> bool:
    """Send an HTML email over SMTP. Returns False when SMTP is not configured or the send failed."""
    if not config.SMTP_HOST:
        logger.warning(f"SMTP_HOST not set, email '{subject}' to {to} not sent")
        return False

    from_address = from_address or config.SMTP_FROM
    recipients = [to] if isinstance(to, str) else to

    try:
        msg = build_message(to, subject, html_content, from_address, attachments)

        with _connect() as server:
            if config.SMTP_PORT != 465:
                server.starttls(context=ssl.create_default_context())
            if config.SMTP_USER:
                server.login(config.SMTP_USER, config.SMTP_PASS or "")
            server.sendmail(from_address.split("<")[-1].rstrip(">"), recipients, msg.as_string())

        logger.info(f"✅ Email '{subject}' sent to {', '.join(recipients)}")
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"❌ SMTP send failed for '{subject}': {e}")
        return False
