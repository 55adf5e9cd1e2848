import logging
from typing import Optional

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType

from src.core.config import SMTP_HOST, SMTP_PASSWORD, SMTP_PORT, SMTP_SENDER, SMTP_USERNAME

logger = logging.getLogger(__name__)


class EmailSender:
    def __init__(self, host: Optional[str] = SMTP_HOST, port: int = SMTP_PORT,
                 username: Optional[str] = SMTP_USERNAME, password: Optional[str] = SMTP_PASSWORD,
                 sender: str = SMTP_SENDER):
        self.config = None
        if host:
            self.config = ConnectionConfig(
                MAIL_USERNAME=username or "",
                MAIL_PASSWORD=password or "",
                MAIL_FROM=sender,
                MAIL_PORT=port,
                MAIL_SERVER=host,
                MAIL_STARTTLS=True,
                MAIL_SSL_TLS=False,
                USE_CREDENTIALS=bool(username),
            )

    @property
    def enabled(self) -> bool:
        return self.config is not None

    async def send(self, to: str, subject: str, body: str) -> bool:
        if not self.enabled:
            logger.info("SMTP is not configured, skipping email to %s", to)
            return False

        message = MessageSchema(subject=subject, recipients=[to], body=body, subtype=MessageType.plain)
        await FastMail(self.config).send_message(message)
        return True
