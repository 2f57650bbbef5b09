import os
import logging
from datetime import datetime
from typing import Optional, Tuple
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, To, From, Subject, HtmlContent, PlainTextContent
from jinja2 import Environment, FileSystemLoader, select_autoescape

from assessment_portal.core.settings import settings

logger = logging.getLogger("assessment_portal.email")

SENDER_NAME = "Assessment Portal"


def format_due(value: Optional[datetime], fmt: str = "%d %b %Y, %H:%M UTC") -> str:
    """Jinja2 filter and plain-text helper for due dates."""
    if value is None:
        return "the scheduled deadline"
    return value.strftime(fmt)


def get_email_template_env():
    """Get Jinja2 environment for email templates."""
    template_dir = os.path.join(os.path.dirname(__file__), '../templates/email')
    env = Environment(
        loader=FileSystemLoader(template_dir),
        autoescape=select_autoescape(['html', 'xml'])
    )
    env.filters['due'] = format_due
    return env


def get_sendgrid_client():
    """Get SendGrid client if configured and log diagnostics (without leaking key)."""
    api_key = os.getenv("SENDGRID_API_KEY")
    if not api_key:
        logger.warning("[email] SENDGRID_API_KEY missing from environment")
        return None
    logger.debug(f"[email] SendGrid key loaded (length={len(api_key)})")
    if api_key.startswith("your_"):
        logger.warning("[email] SENDGRID_API_KEY appears to be a placeholder (starts with 'your_')")
        return None
    try:
        return SendGridAPIClient(api_key)
    except Exception as e:
        logger.error(f"[email] Failed to instantiate SendGrid client: {e}")
        return None


def render_test_assigned_email(candidate_name: str, test_name: str,
                               due: Optional[datetime]) -> Tuple[str, str]:
    """Render HTML and plain-text bodies for a new test assignment."""
    plain_text = f"""
New Test Assigned

Dear {candidate_name},

You have been assigned a new test: {test_name}. Please complete it by {format_due(due)}.

Open your assessments: {settings.app_url}

Best regards,
Assessment Portal Team
    """.strip()

    try:
        template = get_email_template_env().get_template('test_assigned.html')
        html_content = template.render(
            candidate_name=candidate_name,
            test_name=test_name,
            due=due,
            app_url=settings.app_url,
        )
        return html_content, plain_text
    except Exception as e:
        logger.error(f"Failed to render test assignment email template: {e}")
        return plain_text, plain_text


def send_email(to_email: str, subject: str, html_content: str,
               plain_content: str, from_email: str = None) -> bool:
    """Send email using SendGrid.

    Logging levels:
    - INFO: success
    - WARNING: configuration issues / skipped send
    - ERROR: failed send attempt with response diagnostics
    """
    client = get_sendgrid_client()
    if not client:
        logger.warning(f"[email] Skipping send to {to_email} (client unavailable)")
        return False

    from_email = from_email or settings.email_from_address
    message = Mail(
        from_email=From(from_email, SENDER_NAME),
        to_emails=To(to_email),
        subject=Subject(subject),
        html_content=HtmlContent(html_content),
        plain_text_content=PlainTextContent(plain_content)
    )
    try:
        response = client.send(message)
    except Exception as e:
        body = getattr(e, "body", None)
        logger.error(f"[email] SendGrid send failed to={to_email} subject={subject!r}: {e} body={body!r}")
        return False

    status_code = getattr(response, "status_code", None)
    if status_code and status_code >= 400:
        logger.error(f"[email] SendGrid rejected message to={to_email} status={status_code}")
        return False
    logger.info(f"[email] Sent '{subject}' to {to_email} (status={status_code})")
    return True
