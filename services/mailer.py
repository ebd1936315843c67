"""
SMTP mail transport: HTML emails with an optional plain-text part and
attachments, sent through the configured relay.
"""

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Iterable, Optional

import config
from models.errors import MailDeliveryError

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"


def single_line(value) -> str:
    """Header values may not contain line breaks"""
    return ' '.join(str(value or '').splitlines()).strip()


def smtp_text(response) -> str:
    if isinstance(response, bytes):
        return response.decode('utf-8', 'replace')
    return str(response)


@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class Mailer:
    """Pre-configured SMTP client."""

    def __init__(self, host: str = None, port: int = None, use_tls: bool = None,
                 username: str = None, password: str = None,
                 sender_name: str = None, sender: str = None, timeout: int = None):
        self.host = host or config.SMTP_HOST
        self.port = port or config.SMTP_PORT
        self.use_tls = config.SMTP_USE_TLS if use_tls is None else use_tls
        self.username = username or config.SMTP_USERNAME
        self.password = password or config.SMTP_PASSWORD
        self.sender_name = sender_name or config.EMAIL_FROM_NAME
        self.sender = sender or config.EMAIL_FROM
        self.timeout = timeout or config.SMTP_TIMEOUT

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        return context

    def _open(self, track: dict) -> smtplib.SMTP:
        track['command'] = 'CONN'
        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            track['command'] = 'EHLO'
            smtp.ehlo()
            if self.use_tls and smtp.has_extn('starttls'):
                track['command'] = 'STARTTLS'
                smtp.starttls(context=self._tls_context())
                smtp.ehlo()
            if self.username:
                track['command'] = 'AUTH'
                smtp.login(self.username, self.password or '')
        except Exception:
            smtp.close()
            raise
        return smtp

    def build_message(self, to: str, subject: str, html: str, text: Optional[str] = None,
                      cc: Optional[str] = None,
                      attachments: Iterable[Attachment] = ()) -> EmailMessage:
        message = EmailMessage()
        message['From'] = formataddr((self.sender_name, self.sender))
        message['To'] = single_line(to)
        if cc:
            message['Cc'] = single_line(cc)
        message['Subject'] = single_line(subject)
        message['Message-ID'] = make_msgid(domain=self.sender.split('@')[-1])

        if text:
            message.set_content(text)
            message.add_alternative(html, subtype='html')
        else:
            message.set_content(html, subtype='html')

        for attachment in attachments:
            maintype, _, subtype = attachment.content_type.partition('/')
            message.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or 'octet-stream',
                filename=attachment.filename,
            )
        return message

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None,
             cc: Optional[str] = None, attachments: Iterable[Attachment] = ()) -> str:
        """Send the email and return its Message-ID"""
        message = self.build_message(to, subject, html, text=text, cc=cc,
                                     attachments=list(attachments))
        track = {}
        try:
            with self._open(track) as smtp:
                track['command'] = 'DATA'
                smtp.send_message(message)
        except smtplib.SMTPRecipientsRefused as e:
            raise MailDeliveryError(str(e), smtp={
                "code": "EENVELOPE",
                "command": "RCPT TO",
                "response": {rcpt: f"{code} {smtp_text(resp)}" for rcpt, (code, resp) in e.recipients.items()},
            })
        except smtplib.SMTPResponseException as e:
            response = smtp_text(e.smtp_error)
            raise MailDeliveryError(f"{e.smtp_code} {response}", smtp={
                "code": type(e).__name__,
                "responseCode": e.smtp_code,
                "response": response,
                "command": track.get('command'),
            })
        except (smtplib.SMTPException, OSError) as e:
            raise MailDeliveryError(str(e) or type(e).__name__, smtp={
                "code": type(e).__name__,
                "command": track.get('command'),
            })

        logger.info(f"Email sent to {to}{f' (CC: {cc})' if cc else ''}: {subject}")
        return message['Message-ID']

    def verify(self) -> bool:
        """Check that the relay accepts a connection; never raises"""
        try:
            with self._open({}) as smtp:
                smtp.noop()
            logger.info(f"SMTP relay ready: {self.host}:{self.port}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP relay check failed: {e}")
            return False


mailer = Mailer()
