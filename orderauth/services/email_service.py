import logging
import smtplib
from email.message import EmailMessage
from urllib.parse import urlencode

from orderauth.core.config import Settings, get_smtp_ctx

logger = logging.getLogger(__name__)


def build_invitation_link(base_url: str, email: str, token: str) -> str:
    return f"{base_url.rstrip('/')}?{urlencode({'email': email, 'token': token})}"


def send_admin_invitation(settings: Settings, to_email: str, link: str) -> None:
    if not settings.smtp_host or not settings.mail_from:
        logger.warning("SMTP is not configured; invitation for %s not sent", to_email)
        return

    msg = EmailMessage()
    msg["Subject"] = "You have been invited to manage orders"
    msg["From"] = settings.mail_from
    msg["To"] = to_email
    msg.set_content(
        "Hi,\n\nYou have been invited as an administrator. "
        f"Finish your registration here: {link}\n"
    )
    msg.add_alternative(
        f"""<p>Hi,</p>
            <p>You have been invited as an <b>administrator</b>.</p>
            <p>Follow this link to finish your registration: <a href=\"{link}\">{link}</a></p>
            <p>If you did not expect this email, you can safely ignore it.</p>""",
        subtype="html",
    )
    ctx = get_smtp_ctx()
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=20) as smtp:
        smtp.ehlo()
        smtp.starttls(context=ctx)
        smtp.ehlo()
        if settings.smtp_username and settings.smtp_password:
            smtp.login(settings.smtp_username, settings.smtp_password)
        smtp.send_message(msg)
    logger.info("Invitation email sent to %s", to_email)
