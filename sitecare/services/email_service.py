"""Outbound email for the reset flow, sent over SMTP."""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

logger = logging.getLogger(__name__)

RESET_SUBJECT = "Reset your SiteCare password"


class EmailService:
    """SMTP sender. Without SMTP credentials, or in console mode, links go to the log."""

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_username: Optional[str] = None,
        smtp_password: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: str = "SiteCare",
        console_mode: bool = False,
        timeout: float = 10.0,
    ):
        self.smtp_host = smtp_host or ""
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username or ""
        self.smtp_password = smtp_password or ""
        self.from_email = from_email or ""
        self.from_name = from_name
        self.timeout = timeout
        self.enabled = bool(self.smtp_host and self.smtp_username and self.from_email) and not console_mode
        if not self.enabled:
            logger.info("SMTP delivery disabled; password reset links will be logged")

    def send_password_reset_email(self, to_email: str, reset_url: str, first_name: Optional[str] = None) -> bool:
        """
        Send the password reset link.

        Args:
            to_email: Recipient email
            reset_url: Link embedding the reset token
            first_name: Used in the greeting when known

        Returns:
            True if sent (or logged in console mode), False otherwise
        """
        if not self.enabled:
            logger.info("[EMAIL] Password reset URL for %s: %s", to_email, reset_url)
            return True

        greeting = f"Hi {first_name}," if first_name else "Hi,"
        text_body = (
            f"{greeting}\n\n"
            "Someone asked to reset the password on your SiteCare account.\n"
            f"Choose a new password here: {reset_url}\n\n"
            "The link works once and expires after one hour.\n"
            "If this wasn't you, no action is needed.\n"
        )
        html_body = f"""\
<!DOCTYPE html>
<html>
  <body style="margin:0;background:#f8fafc;font-family:Helvetica,Arial,sans-serif;color:#1e293b;">
    <table role="presentation" width="100%" cellpadding="0" cellspacing="0">
      <tr>
        <td align="center" style="padding:40px 16px;">
          <table role="presentation" width="560" style="background:#ffffff;border:1px solid #e2e8f0;">
            <tr><td style="padding:24px 32px;font-size:20px;font-weight:700;">SiteCare</td></tr>
            <tr>
              <td style="padding:0 32px 8px;line-height:1.5;">
                <p>{greeting}</p>
                <p>Someone asked to reset the password on your SiteCare account.</p>
              </td>
            </tr>
            <tr>
              <td style="padding:16px 32px;">
                <a href="{reset_url}" style="background:#2563eb;color:#ffffff;padding:12px 24px;text-decoration:none;">
                  Choose a new password
                </a>
              </td>
            </tr>
            <tr>
              <td style="padding:8px 32px 32px;font-size:13px;color:#64748b;line-height:1.5;">
                The link works once and expires after one hour. If this wasn't you, no action is needed.
              </td>
            </tr>
          </table>
        </td>
      </tr>
    </table>
  </body>
</html>
"""
        return self._send(to_email, RESET_SUBJECT, text_body, html_body)

    def _send(self, to_email: str, subject: str, text_body: str, html_body: str) -> bool:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = to_email
        message.set_content(text_body)
        message.add_alternative(html_body, subtype="html")

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send email to %s", to_email)
            return False

        logger.info("Password reset email sent to %s", to_email)
        return True
