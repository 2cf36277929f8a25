"""Shared fixtures for the PassDesk test suite."""

import os
import shutil
import tempfile
import unittest

from passdesk.modules.database_manager import DatabaseManager
from passdesk.modules.pass_issuer import PassIssuer
from passdesk.modules.pass_verifier import PassVerifier
from passdesk.modules.qr_generator import QRGenerator
from passdesk.modules.student_directory import StudentDirectory


class FakeMailer:
    """Stands in for PassMailer; records deliveries or fails on demand."""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send_pass_email(self, recipient, name, roll_number, class_section=None,
                        qr_image=None, qr_image_path=None):
        if self.fail:
            return {'success': False, 'error': 'SMTP server unavailable'}
        self.sent.append({
            'recipient': recipient,
            'name': name,
            'roll_number': roll_number,
            'class_section': class_section,
            'qr_image': qr_image,
            'qr_image_path': qr_image_path
        })
        return {'success': True}


class StoreTestCase(unittest.TestCase):
    """Fresh on-disk database and components for every test."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix='passdesk-')
        self.db = DatabaseManager(os.path.join(self.tmpdir, 'passdesk.db'), timeout=10)
        self.db.initialize_database()
        self.directory = StudentDirectory(self.db)
        self.qr_generator = QRGenerator(output_dir=os.path.join(self.tmpdir, 'qr_codes'))
        self.mailer = FakeMailer()
        self.issuer = PassIssuer(self.db, self.directory, self.qr_generator, self.mailer)
        self.verifier = PassVerifier(self.db, self.qr_generator)

    def tearDown(self):
        self.db.close_all_connections()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def issue(self, name, email, roll_number, class_section=None):
        """Issue a pass and return (student_id, pass_id)."""
        result = self.issuer.issue_pass({
            'name': name,
            'email': email,
            'roll_number': roll_number,
            'class_section': class_section
        })
        self.assertEqual(result.status, 'success', result.message)
        return result.student_id, result.pass_id

    def add_unissued(self, name, email, roll_number):
        result = self.directory.add_student({'name': name, 'email': email, 'roll_number': roll_number})
        self.assertTrue(result['success'], result)
        return result['id']
