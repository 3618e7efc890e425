import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import resend
from fastapi import Request
from mjml import mjml_to_html

from .config import (
    EMAIL_BATCH_PAUSE_SECONDS,
    EMAIL_BATCH_SIZE,
    EMAIL_FROM_ADDRESS,
    RESEND_API_KEY,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
)
from .email_templates import render_email
from .shared.timeutils import utcnow

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """A transport failed to hand the message off"""


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    result = mjml_to_html(mjml_content)
    # mjml_to_html returns a dict with 'html' and 'errors' keys
    if isinstance(result, dict):
        if result.get("errors"):
            logger.warning(f"MJML compilation warnings: {result['errors']}")
        return result.get("html", "")
    html = getattr(result, "html", None)
    if html is not None:
        return html
    return str(result)


class Mailer:
    """
    Sends rendered emails through SMTP when a host is configured, falling back
    to Resend. Delivery problems are reported in the result dict, never raised.
    """

    def __init__(
        self,
        from_address: str = EMAIL_FROM_ADDRESS,
        smtp_host: Optional[str] = SMTP_HOST,
        smtp_port: int = SMTP_PORT,
        smtp_username: Optional[str] = SMTP_USERNAME,
        smtp_password: Optional[str] = SMTP_PASSWORD,
        smtp_use_tls: bool = SMTP_USE_TLS,
        resend_api_key: Optional[str] = RESEND_API_KEY,
    ):
        self.from_address = from_address
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.resend_api_key = resend_api_key

    def _connect(self) -> smtplib.SMTP:
        if self.smtp_port == 465:
            context = ssl.create_default_context()
            return smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30)
        server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30)
        if self.smtp_use_tls:
            try:
                server.starttls(context=ssl.create_default_context())
            except (smtplib.SMTPException, OSError):
                server.close()
                raise
        return server

    def _send_via_smtp(self, to: str, subject: str, html_content: str) -> str:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to
        msg.attach(MIMEText(html_content, "html"))

        try:
            with self._connect() as server:
                if self.smtp_username and self.smtp_password:
                    server.login(self.smtp_username, self.smtp_password)
                server.sendmail(self.from_address.split("<")[-1].rstrip(">"), [to], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP failed: {str(e)}") from e

        logger.info(f"✅ SMTP email sent successfully via {self.smtp_host}")
        return f"smtp-{utcnow().timestamp()}"

    def _send_via_resend(self, to: str, subject: str, html_content: str) -> str:
        resend.api_key = self.resend_api_key
        try:
            response = resend.Emails.send(
                {"from": self.from_address, "to": [to], "subject": subject, "html": html_content}
            )
        except Exception as e:
            raise EmailDeliveryError(f"Resend failed: {str(e)}") from e
        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info(f"✅ Email sent successfully via Resend: {message_id}")
        return message_id or f"resend-{utcnow().timestamp()}"

    def _deliver(self, to: str, subject: str, html_content: str) -> str:
        if self.smtp_host:
            try:
                logger.info(f"📧 Sending email via SMTP: {self.smtp_host}")
                return self._send_via_smtp(to, subject, html_content)
            except EmailDeliveryError as e:
                if not self.resend_api_key:
                    raise
                logger.warning(f"⚠️ SMTP failed, falling back to Resend: {e}")
        if not self.resend_api_key:
            raise EmailDeliveryError("Email service not configured")
        logger.info(f"📧 Sending email via Resend to: {to}")
        return self._send_via_resend(to, subject, html_content)

    async def send(self, to: str, subject: str, mjml_content: str) -> dict:
        if not to:
            return {"success": False, "error": "Recipient email is required"}
        try:
            html_content = compile_mjml_to_html(mjml_content)
            message_id = await asyncio.to_thread(self._deliver, to, subject, html_content)
        except Exception as e:
            logger.error(f"❌ Email send error to {to}: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True, "messageId": message_id}

    async def send_template(self, to: str, notification_type: str, data: dict) -> dict:
        subject, mjml_content = render_email(notification_type, data)
        return await self.send(to, subject, mjml_content)

    async def send_batch(
        self,
        recipients: list[str],
        subject: str,
        mjml_content: str,
        batch_size: int = EMAIL_BATCH_SIZE,
        pause_seconds: float = EMAIL_BATCH_PAUSE_SECONDS,
    ) -> dict:
        """Send one message to many recipients, a group at a time with a pause between groups"""
        sent, failed = 0, 0
        for start in range(0, len(recipients), batch_size):
            group = recipients[start : start + batch_size]
            results = await asyncio.gather(*(self.send(to, subject, mjml_content) for to in group))
            for result in results:
                if result["success"]:
                    sent += 1
                else:
                    failed += 1
            if start + batch_size < len(recipients):
                await asyncio.sleep(pause_seconds)
        logger.info(f"📬 Batch email complete: {sent} sent, {failed} failed")
        return {"sent": sent, "failed": failed, "total": len(recipients)}


def get_mailer(request: Request) -> Mailer:
    mailer = getattr(request.app.state, "mailer", None)
    if mailer is None:
        mailer = Mailer()
        request.app.state.mailer = mailer
    return mailer
