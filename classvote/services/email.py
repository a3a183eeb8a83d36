"""Email delivery of voting tickets over SMTP."""

import asyncio
import html as html_lib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import smtplib
import ssl

from classvote.core.config import get_settings
from classvote.core.logging_config import get_logger

logger = get_logger(__name__)
settings = get_settings()


class EmailService:
    """Service for sending emails via SMTP."""

    def __init__(self):
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.smtp_tls = settings.SMTP_TLS
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.ticket_ttl_minutes = settings.TICKET_TTL_MINUTES

    async def send_voting_ticket(
        self, to_email: str, ticket_code: str, election_title: str
    ) -> bool:
        """
        Send a voting ticket email.

        Args:
            to_email: Recipient email address
            ticket_code: Plaintext ticket code
            election_title: Title of the election the ticket is for

        Returns:
            bool: True if email sent successfully, False otherwise
        """
        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = f"Your Voting Ticket for {election_title}"
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email

            safe_title = html_lib.escape(election_title)
            html = f"""
            <html>
            <body>
                <h2>Your Voting Ticket</h2>
                <p>You have requested to vote in the election: <strong>{safe_title}</strong></p>
                <p>Your voting ticket is:</p>
                <p style="font-size: 24px; font-weight: bold; letter-spacing: 4px;">{ticket_code}</p>
                <p><strong>Important:</strong> This ticket is valid for <strong>{self.ticket_ttl_minutes} minutes only</strong>.</p>
                <p>Do not share this ticket with anyone. It is your unique voting credential.</p>
            </body>
            </html>
            """

            text = f"""
            Your Voting Ticket

            You have requested to vote in the election: {election_title}

            Your voting ticket is: {ticket_code}

            Important: This ticket is valid for {self.ticket_ttl_minutes} minutes only.

            Do not share this ticket with anyone. It is your unique voting credential.
            """

            msg.attach(MIMEText(text, "plain"))
            msg.attach(MIMEText(html, "html"))

            # Send email in thread pool to avoid blocking
            await asyncio.get_running_loop().run_in_executor(
                None, self._send_email_sync, to_email, msg.as_string()
            )

            logger.info(f"Voting ticket email sent to {to_email}")
            return True

        except Exception as e:
            logger.error(f"Failed to send voting ticket email to {to_email}: {e!s}")
            return False

    def _send_email_sync(self, to_email: str, email_content: str) -> None:
        """Send email synchronously (called from thread pool)."""
        context = ssl.create_default_context()

        if self.smtp_tls:
            server = smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30)
            server.starttls(context=context)
        else:
            server = smtplib.SMTP_SSL(
                self.smtp_server, self.smtp_port, context=context, timeout=30
            )

        try:
            if self.smtp_username and self.smtp_password:
                server.login(self.smtp_username, self.smtp_password)
            server.sendmail(self.from_email, [to_email], email_content)
        finally:
            server.quit()


# Global email service instance
email_service = EmailService()
