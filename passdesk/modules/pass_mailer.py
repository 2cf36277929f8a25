"""
Pass Mailer Module - PassDesk Event Pass System

Delivers event passes by email. The QR image is attached inline and the HTML
body references it by content-id so mail clients show it without downloading
remote content. Sending is synchronous; the caller gets a success flag and,
on failure, the error text.

When ``suppress_send`` is set (testing, dry runs) messages are kept in
``outbox`` instead of being handed to the SMTP server.
"""

import logging
import smtplib
import ssl
import threading
from datetime import datetime
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

from jinja2 import Template

QR_CONTENT_ID = 'qr-code@passdesk'

PASS_EMAIL_TEMPLATE = """
<html>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f6f9fc;">
  <div style="max-width: 600px; margin: 0 auto; background-color: #ffffff; padding: 40px;">
    <h1 style="color: #1a73e8; text-align: center;">Your {{ event_name }} Pass</h1>

    <p>Dear {{ name }},</p>
    <p>Here is your QR code pass for the {{ event_name }} event. Please keep this email
       and present the QR code at the entrance. The pass can be scanned only once.</p>

    <div style="text-align: center; margin: 30px 0;">
      <img src="cid:{{ content_id }}" alt="QR Code Pass" style="width: 250px; height: 250px;">
    </div>

    <h3 style="color: #1a73e8;">Pass Details</h3>
    <table style="width: 100%; border-collapse: collapse;">
      <tr><td><strong>Name:</strong></td><td>{{ name }}</td></tr>
      <tr><td><strong>Email:</strong></td><td>{{ email }}</td></tr>
      <tr><td><strong>Roll Number:</strong></td><td>{{ roll_number }}</td></tr>
      {% if class_section %}
      <tr><td><strong>Class/Section:</strong></td><td>{{ class_section }}</td></tr>
      {% endif %}
    </table>

    <hr>
    <p style="color: #888888; font-size: 12px; text-align: center;">
      This is an automated email sent on {{ sent_at }}. Please do not reply.
    </p>
  </div>
</body>
</html>
"""


class PassMailer:
    """
    SMTP sender for event pass emails.
    """

    def __init__(self, smtp_server: str, smtp_port: int = 587,
                 username: Optional[str] = None, password: Optional[str] = None,
                 use_tls: bool = True, sender: Optional[str] = None,
                 event_name: str = 'Farewell', timeout: float = 30,
                 suppress_send: bool = False):
        self.logger = logging.getLogger(__name__)
        self.email_config = {
            'smtp_server': smtp_server,
            'smtp_port': smtp_port,
            'username': username,
            'password': password,
            'use_tls': use_tls,
            'sender': sender or username,
            'timeout': timeout
        }
        self.event_name = event_name
        self.suppress_send = suppress_send
        self.template = Template(PASS_EMAIL_TEMPLATE, autoescape=True)

        self.outbox: List[MIMEMultipart] = []
        self._outbox_lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> 'PassMailer':
        """Build a mailer from a Flask config mapping."""
        return cls(
            smtp_server=config['MAIL_SERVER'],
            smtp_port=config['MAIL_PORT'],
            username=config.get('MAIL_USERNAME'),
            password=config.get('MAIL_PASSWORD'),
            use_tls=config['MAIL_USE_TLS'],
            sender=config.get('MAIL_DEFAULT_SENDER'),
            event_name=config.get('EVENT_NAME', 'Farewell'),
            timeout=config.get('MAIL_TIMEOUT', 30),
            suppress_send=config.get('MAIL_SUPPRESS_SEND', False)
        )

    def build_message(self, recipient: str, name: str, roll_number: str,
                      class_section: Optional[str] = None,
                      qr_image: Optional[bytes] = None,
                      qr_image_path: Optional[str] = None) -> MIMEMultipart:
        """
        Render the pass email with the QR image embedded by content-id.

        Exactly one of qr_image (PNG bytes) or qr_image_path must be given.
        """
        if qr_image is None:
            if not qr_image_path:
                raise ValueError('A QR image buffer or file path is required')
            with open(qr_image_path, 'rb') as f:
                qr_image = f.read()

        msg = MIMEMultipart('related')
        msg['From'] = self.email_config['sender']
        msg['To'] = recipient
        msg['Subject'] = f"Your {self.event_name} Pass"

        body = self.template.render(
            event_name=self.event_name,
            name=name,
            email=recipient,
            roll_number=roll_number,
            class_section=class_section,
            content_id=QR_CONTENT_ID,
            sent_at=datetime.now().strftime('%Y-%m-%d %H:%M')
        )
        msg.attach(MIMEText(body, 'html'))

        image = MIMEImage(qr_image, _subtype='png')
        image.add_header('Content-ID', f'<{QR_CONTENT_ID}>')
        image.add_header('Content-Disposition', 'inline', filename='qr-code.png')
        msg.attach(image)

        return msg

    def send_pass_email(self, recipient: str, name: str, roll_number: str,
                        class_section: Optional[str] = None,
                        qr_image: Optional[bytes] = None,
                        qr_image_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Send a pass email.

        Returns:
            dict: {'success': bool, 'error': str (on failure)}
        """
        try:
            msg = self.build_message(recipient, name, roll_number, class_section,
                                     qr_image=qr_image, qr_image_path=qr_image_path)

            if self.suppress_send:
                with self._outbox_lock:
                    self.outbox.append(msg)
                self.logger.info(f"Pass email to {recipient} kept in outbox (sending suppressed)")
                return {'success': True}

            config = self.email_config
            with smtplib.SMTP(config['smtp_server'], config['smtp_port'],
                              timeout=config['timeout']) as server:
                if config['use_tls']:
                    context = ssl.create_default_context()
                    server.starttls(context=context)

                if config['username'] and config['password']:
                    server.login(config['username'], config['password'])
                server.send_message(msg)

            self.logger.info(f"Pass email sent to {recipient}")
            return {'success': True}

        except (smtplib.SMTPException, OSError, ValueError) as e:
            self.logger.error(f"Failed to send pass email to {recipient}: {str(e)}")
            return {'success': False, 'error': str(e)}

    def is_configured(self) -> bool:
        """Check if email configuration is complete."""
        return self.suppress_send or bool(
            self.email_config['smtp_server'] and self.email_config['sender']
        )
