import os
import shutil
import smtplib
import tempfile
import unittest
from unittest import mock

from passdesk.modules.pass_mailer import QR_CONTENT_ID, PassMailer

PNG = b'\x89PNG\r\n\x1a\nfake-image-bytes'


class TestPassMailer(unittest.TestCase):

    def setUp(self):
        self.mailer = PassMailer(
            smtp_server='smtp.example.com',
            smtp_port=587,
            username='events@example.com',
            password='secret',
            use_tls=True,
            event_name='Farewell',
            suppress_send=True
        )

    def _parts(self, message):
        html, image = message.get_payload()
        return html.get_payload(decode=True).decode('utf-8'), image

    def test_message_embeds_qr_image(self):
        message = self.mailer.build_message('alice@x.com', 'Alice', 'R1', 'CS-A', qr_image=PNG)

        self.assertEqual(message.get_content_subtype(), 'related')
        self.assertEqual(message['Subject'], 'Your Farewell Pass')
        self.assertEqual(message['From'], 'events@example.com')
        self.assertEqual(message['To'], 'alice@x.com')

        html, image = self._parts(message)
        self.assertIn(f'cid:{QR_CONTENT_ID}', html)
        self.assertIn('Alice', html)
        self.assertIn('CS-A', html)
        self.assertEqual(image['Content-ID'], f'<{QR_CONTENT_ID}>')
        self.assertEqual(image.get_payload(decode=True), PNG)

    def test_class_section_row_is_optional(self):
        html, _ = self._parts(self.mailer.build_message('bob@x.com', 'Bob', 'R2', qr_image=PNG))

        self.assertNotIn('Class/Section', html)

    def test_names_are_escaped(self):
        html, _ = self._parts(self.mailer.build_message('e@x.com', '<b>Eve</b>', 'R3', qr_image=PNG))

        self.assertIn('&lt;b&gt;Eve&lt;/b&gt;', html)

    def test_image_from_path(self):
        tmpdir = tempfile.mkdtemp(prefix='passdesk-mail-')
        self.addCleanup(shutil.rmtree, tmpdir, True)
        path = os.path.join(tmpdir, 'pass.png')
        with open(path, 'wb') as f:
            f.write(PNG)

        _, image = self._parts(self.mailer.build_message('a@x.com', 'A', 'R1', qr_image_path=path))

        self.assertEqual(image.get_payload(decode=True), PNG)

    def test_suppressed_send_keeps_outbox(self):
        result = self.mailer.send_pass_email('alice@x.com', 'Alice', 'R1', qr_image=PNG)

        self.assertEqual(result, {'success': True})
        self.assertEqual(len(self.mailer.outbox), 1)
        self.assertEqual(self.mailer.outbox[0]['To'], 'alice@x.com')

    def test_missing_image_fails(self):
        result = self.mailer.send_pass_email('alice@x.com', 'Alice', 'R1')

        self.assertFalse(result['success'])
        self.assertIn('QR image', result['error'])
        self.assertEqual(self.mailer.outbox, [])

    @mock.patch('passdesk.modules.pass_mailer.smtplib.SMTP')
    def test_send_over_smtp(self, smtp_class):
        self.mailer.suppress_send = False
        server = smtp_class.return_value.__enter__.return_value

        result = self.mailer.send_pass_email('alice@x.com', 'Alice', 'R1', qr_image=PNG)

        self.assertTrue(result['success'])
        smtp_class.assert_called_once_with('smtp.example.com', 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('events@example.com', 'secret')
        server.send_message.assert_called_once()

    @mock.patch('passdesk.modules.pass_mailer.smtplib.SMTP')
    def test_smtp_failure_is_reported(self, smtp_class):
        self.mailer.suppress_send = False
        server = smtp_class.return_value.__enter__.return_value
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused({'alice@x.com': (550, b'no')})

        result = self.mailer.send_pass_email('alice@x.com', 'Alice', 'R1', qr_image=PNG)

        self.assertFalse(result['success'])
        self.assertIn('alice@x.com', result['error'])

    @mock.patch('passdesk.modules.pass_mailer.smtplib.SMTP', side_effect=ConnectionRefusedError('refused'))
    def test_unreachable_server_is_reported(self, smtp_class):
        self.mailer.suppress_send = False

        result = self.mailer.send_pass_email('alice@x.com', 'Alice', 'R1', qr_image=PNG)

        self.assertEqual(result, {'success': False, 'error': 'refused'})

    def test_from_config(self):
        mailer = PassMailer.from_config({
            'MAIL_SERVER': 'localhost',
            'MAIL_PORT': 1025,
            'MAIL_USE_TLS': False,
            'MAIL_DEFAULT_SENDER': 'noreply@passdesk.local',
            'EVENT_NAME': 'Graduation',
            'MAIL_SUPPRESS_SEND': True
        })

        self.assertEqual(mailer.email_config['sender'], 'noreply@passdesk.local')
        self.assertEqual(mailer.event_name, 'Graduation')
        self.assertTrue(mailer.is_configured())


if __name__ == '__main__':
    unittest.main()
