from postmarker.core import PostmarkClient
from database import database
from models import MessageLog, EmailTemplateAlias, utc_now
from datetime import datetime
import os
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

# Verified sender in Postmark
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", "FlexBit Support <support@flexbit.id>")


class EmailService:
    def __init__(self):
        postmark_token = os.getenv("POSTMARK_SERVER_TOKEN")
        if not postmark_token:
            logger.warning("POSTMARK_SERVER_TOKEN not set - emails will be logged but not sent")
            self.client = None
        else:
            self.client = PostmarkClient(server_token=postmark_token)
            logger.info("Postmark email client initialized")

    async def send_email(
        self,
        recipient: str,
        template_alias: EmailTemplateAlias,
        template_model: Dict[str, Any],
        subject: str,
        user_id: Optional[str] = None,
    ) -> MessageLog:
        """Send a built-in template email and record it in message_logs."""
        db = database.get_db()

        message_log = MessageLog(
            user_id=user_id,
            recipient=recipient,
            template_alias=template_alias,
            subject=subject,
            status="queued"
        )

        try:
            if self.client:
                response = self.client.emails.send(
                    From=DEFAULT_SENDER,
                    To=recipient,
                    Subject=subject,
                    HtmlBody=self._build_html_body(template_alias, template_model),
                    TextBody=self._build_text_body(template_alias, template_model),
                    TrackLinks="None",
                    Tag=template_alias.value
                )
                message_log.postmark_message_id = response["MessageID"]
                message_log.status = "sent"
                message_log.sent_at = utc_now()
                logger.info(f"Email sent to {recipient}: {response['MessageID']}")
            else:
                # Dev mode - just log
                message_log.status = "sent"
                message_log.sent_at = utc_now()
                logger.info(f"[DEV MODE] Email logged (not sent) to {recipient}")

        except Exception as e:
            message_log.status = "failed"
            message_log.error_message = str(e)
            logger.error(f"Failed to send email to {recipient}: {e}")

        doc = message_log.model_dump()
        for key in ["created_at", "sent_at"]:
            if doc.get(key) and isinstance(doc[key], datetime):
                doc[key] = doc[key].isoformat()
        await db.message_logs.insert_one(doc)

        return message_log

    def _build_html_body(self, template_alias: EmailTemplateAlias, model: Dict[str, Any]) -> str:
        if template_alias == EmailTemplateAlias.PASSWORD_RESET:
            return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2 style="color: #3b82f6;">Password Reset Request</h2>
    <p>Hi {model.get('full_name', '')},</p>
    <p>You requested to reset your password for your FlexBit account.</p>
    <p>Click the button below to reset your password. This link is valid for <strong>{model.get('ttl_minutes', 5)} minutes</strong>.</p>
    <a href="{model['reset_url']}" style="display: inline-block; background-color: #3b82f6; color: white; padding: 12px 24px; text-decoration: none; border-radius: 8px; margin: 16px 0;">Reset Password</a>
    <p>Or copy and paste this link into your browser:</p>
    <p style="color: #666; word-break: break-all;">{model['reset_url']}</p>
    <hr style="border: none; border-top: 1px solid #eee; margin: 24px 0;">
    <p style="color: #999; font-size: 12px;">If you didn't request this, please ignore this email. Your password will remain unchanged.</p>
</div>
"""
        raise ValueError(f"No HTML template for {template_alias}")

    def _build_text_body(self, template_alias: EmailTemplateAlias, model: Dict[str, Any]) -> str:
        if template_alias == EmailTemplateAlias.PASSWORD_RESET:
            return (
                f"Hi {model.get('full_name', '')},\n\n"
                f"You requested to reset your password for your FlexBit account.\n"
                f"Open this link within {model.get('ttl_minutes', 5)} minutes:\n\n"
                f"{model['reset_url']}\n\n"
                f"If you didn't request this, please ignore this email."
            )
        raise ValueError(f"No text template for {template_alias}")

    async def send_password_reset_email(
        self,
        recipient: str,
        full_name: str,
        reset_url: str,
        ttl_minutes: int,
        user_id: Optional[str] = None,
    ) -> MessageLog:
        return await self.send_email(
            recipient=recipient,
            template_alias=EmailTemplateAlias.PASSWORD_RESET,
            template_model={"full_name": full_name, "reset_url": reset_url, "ttl_minutes": ttl_minutes},
            subject="Password Reset Request - FlexBit",
            user_id=user_id,
        )


email_service = EmailService()
