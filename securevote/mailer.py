# securevote/mailer.py
import logging
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Optional

from . import config

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    pass


class OtpMailer:
    """Delivers OTP codes by e-mail.

    With no SMTP host configured nothing is sent; the code is only logged
    when demo mode is on, and the caller decides whether to echo it back.
    """

    def __init__(
        self,
        host: Optional[str] = config.SMTP_HOST,
        port: int = config.SMTP_PORT,
        secure: bool = config.SMTP_SECURE,
        user: Optional[str] = config.SMTP_USER,
        password: Optional[str] = config.SMTP_PASS,
        sender: str = config.MAIL_FROM,
        demo_mode: bool = config.DEMO_MODE,
    ):
        self.host = host
        self.port = port
        self.secure = secure
        self.user = user
        self.password = password
        self.sender = sender
        self.demo_mode = demo_mode

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def build_message(self, to: str, code: str, expires_at: int) -> EmailMessage:
        minutes = max(1, round((expires_at - datetime.now(timezone.utc).timestamp()) / 60))
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = "Your Secure Voting OTP"
        msg.set_content(f"Your OTP is: {code}. It expires in {minutes} minutes.")
        msg.add_alternative(
            f"<p>Your OTP is: <strong>{code}</strong>. It expires in {minutes} minutes.</p>",
            subtype="html",
        )
        return msg

    def send(self, to: str, code: str, expires_at: int) -> bool:
        """Send the code; returns False when no mail server is configured."""
        if not self.enabled:
            if self.demo_mode:
                logger.info(f"[demo] OTP for {to}: {code}")
            else:
                logger.warning("SMTP_HOST not set; OTP was not delivered")
            return False

        msg = self.build_message(to, code, expires_at)
        smtp_cls = smtplib.SMTP_SSL if self.secure else smtplib.SMTP
        try:
            with smtp_cls(self.host, self.port, timeout=10) as server:
                if not self.secure:
                    server.ehlo()
                    if server.has_extn("starttls"):
                        server.starttls()
                if self.user:
                    server.login(self.user, self.password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"OTP mail delivery failed: {e}")
            raise MailDeliveryError(str(e)) from e
        logger.info("OTP mail sent")
        return True
