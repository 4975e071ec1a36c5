"""Outbound email for password-reset and email-verification links.

When SMTP is not configured the message is logged instead of sent, which is
the normal mode for local development and tests.
"""
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, Optional
from urllib.parse import urlencode

from healthportal.core.logging import get_logger
from healthportal.domain.user import User

logger = get_logger(__name__)


class EmailNotifier:
    """Sends account emails through SMTP.

    Args:
        smtp_config: ``host``/``port``/``from_email`` and optional
            ``username``/``password``; None disables sending
        frontend_url: Base URL of the SPA, used to build links
        debug: Include the link itself in the log line when not sending
    """

    def __init__(
        self,
        smtp_config: Optional[Dict[str, str]] = None,
        frontend_url: str = "http://localhost:3000",
        debug: bool = False,
    ):
        self.smtp_config = smtp_config
        self.frontend_url = frontend_url.rstrip("/")
        self.debug = debug

    def _link(self, path: str, token: str) -> str:
        return f"{self.frontend_url}{path}?{urlencode({'token': token})}"

    def _send(self, to_email: str, subject: str, body: str, link: str) -> bool:
        try:
            if not self.smtp_config:
                logger.warning("SMTP not configured - logging email instead of sending")
                logger.info(f"EMAIL WOULD BE SENT: To: {to_email} Subject: {subject}")
                if self.debug:
                    logger.info(f"  Link: {link}")
                return True

            msg = MIMEMultipart()
            msg['From'] = self.smtp_config.get('from_email', 'noreply@healthportal.local')
            msg['To'] = to_email
            msg['Subject'] = subject
            msg.attach(MIMEText(body, 'plain'))

            with smtplib.SMTP(self.smtp_config['host'], int(self.smtp_config.get('port', 587)), timeout=10) as server:
                server.starttls()
                if 'username' in self.smtp_config and 'password' in self.smtp_config:
                    server.login(self.smtp_config['username'], self.smtp_config['password'])
                server.send_message(msg)

            logger.info(f"Email sent: {subject}")
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email '{subject}': {e}")
            return False

    def send_password_reset(self, user: User, token: str, expires_minutes: int) -> bool:
        link = self._link("/reset-password", token)
        body = f"""
Hello {user.first_name},

A password reset was requested for your account. Use the link below within
{expires_minutes} minutes to choose a new password:

{link}

If you did not request this, you can ignore this email.
        """
        return self._send(user.email, "Reset your password", body, link)

    def send_email_verification(self, user: User, token: str) -> bool:
        link = self._link("/verify-email", token)
        body = f"""
Hello {user.first_name},

Please confirm your email address by opening the link below:

{link}
        """
        return self._send(user.email, "Verify your email address", body, link)
