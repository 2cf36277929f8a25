import json
import os
import shutil
import tempfile
import unittest
from unittest import mock

from support import FakeMailer

from app import create_app


class TestPassDeskAPI(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix='passdesk-api-')
        self.mailer = FakeMailer()
        self.app = create_app('testing', overrides={
            'DATABASE_PATH': os.path.join(self.tmpdir, 'api.db'),
            'REPORTS_FOLDER': os.path.join(self.tmpdir, 'reports'),
            'QR_CODES_FOLDER': os.path.join(self.tmpdir, 'qr_codes'),
        }, mailer=self.mailer)
        self.client = self.app.test_client()
        self.components = self.app.extensions['passdesk']

    def tearDown(self):
        self.components['db'].close_all_connections()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _post(self, url, payload=None):
        return self.client.post(url, data=json.dumps(payload or {}), content_type='application/json')

    def _issue(self, name='Alice', email='alice@x.com', roll_number='R1'):
        response = self._post('/api/students/generate-passes', {
            'students': [{'name': name, 'email': email, 'roll_number': roll_number}]
        })
        self.assertEqual(response.status_code, 200)
        result = response.get_json()['results'][0]
        self.assertEqual(result['status'], 'success')
        return result['student_id'], result['pass_id']

    def test_health(self):
        response = self.client.get('/health')

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertTrue(body['connected'])
        self.assertIn('students', body['tables'])
        self.assertIn('pass_verifier', body['modules'])

    def test_generate_passes_requires_students(self):
        for payload in (None, {'students': []}, {'students': 'nope'}):
            response = self._post('/api/students/generate-passes', payload)
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.get_json()['message'], 'No students provided')

    def test_generate_and_list(self):
        self._issue()

        response = self.client.get('/api/students')

        self.assertEqual(response.status_code, 200)
        students = response.get_json()['students']
        self.assertEqual(len(students), 1)
        self.assertTrue(students[0]['pass_generated'])
        self.assertEqual(len(self.mailer.sent), 1)

    def test_search_listing(self):
        self._issue('Alice', 'alice@x.com', 'R1')
        self._issue('Bob', 'bob@x.com', 'R2')

        response = self.client.get('/api/students?q=bob')

        self.assertEqual([s['name'] for s in response.get_json()['students']], ['Bob'])

    def test_check_duplicates(self):
        self._issue('Alice', 'alice@x.com', 'R1')

        response = self._post('/api/students/check-duplicates', {'students': [
            {'name': 'Alice', 'email': 'ALICE@x.com', 'roll_number': 'R9'},
            {'name': 'Bob', 'email': 'bob@x.com', 'roll_number': 'R2'},
            {'name': 'Bobby', 'email': 'bobby@x.com', 'roll_number': 'R2'},
        ]})

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual([s['name'] for s in body['unique']], ['Bob'])
        self.assertEqual([(d['reason'], d['source']) for d in body['duplicates']],
                         [('email', 'directory'), ('roll_number', 'batch')])

    def test_add_student(self):
        payload = {'name': 'Alice', 'email': 'alice@x.com', 'roll_number': 'R1'}

        created = self._post('/api/students', payload)
        duplicate = self._post('/api/students', payload)
        invalid = self._post('/api/students', {'name': 'Nobody'})

        self.assertEqual(created.status_code, 200)
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(duplicate.get_json()['error_type'], 'DUPLICATE_STUDENT')
        self.assertEqual(invalid.status_code, 400)

    def test_verify_once_then_already_used(self):
        student_id, pass_id = self._issue()

        first = self._post('/api/scanner/verify', {'passId': pass_id, 'studentId': student_id})
        second = self._post('/api/scanner/verify', {'passId': pass_id, 'studentId': student_id})

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.get_json()['message'], 'Pass verified successfully')
        self.assertEqual(second.status_code, 400)
        self.assertEqual(second.get_json()['error_type'], 'ALREADY_USED')
        self.assertTrue(second.get_json()['message'].startswith('Pass already used at'))

    def test_verify_with_raw_qr_data(self):
        student_id, _ = self._issue()
        qr_data = self.components['students'].get_student(student_id).qr_payload

        response = self._post('/api/scanner/verify', {'qrData': qr_data})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['student']['id'], student_id)

    def test_verify_rejections(self):
        missing = self._post('/api/scanner/verify', {'passId': 'abc'})
        invalid = self._post('/api/scanner/verify', {'passId': 'abc', 'studentId': 999})

        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.get_json()['error_type'], 'VALIDATION_ERROR')
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(invalid.get_json()['error_type'], 'INVALID_PASS')

    def test_non_object_bodies_are_rejected_as_json(self):
        verify = self.client.post('/api/scanner/verify', json=[1, 2])
        generate = self.client.post('/api/students/generate-passes', json=[{'name': 'A'}])
        add = self.client.post('/api/students', json=['Alice'])

        self.assertEqual(verify.status_code, 400)
        self.assertEqual(verify.get_json()['error_type'], 'VALIDATION_ERROR')
        self.assertEqual(generate.status_code, 400)
        self.assertEqual(generate.get_json()['message'], 'No students provided')
        self.assertEqual(add.status_code, 400)
        self.assertEqual(add.get_json()['error_type'], 'VALIDATION_ERROR')

    def test_verify_route_unexpected_error(self):
        with mock.patch.object(self.components['verifier'], 'verify_pass',
                               side_effect=RuntimeError('boom')):
            response = self._post('/api/scanner/verify', {'passId': 'abc', 'studentId': 1})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {
            'success': False,
            'message': 'Failed to verify pass',
            'error_type': 'INTERNAL_ERROR'
        })

    def test_verify_store_failure(self):
        student_id, pass_id = self._issue()
        self.components['db'].execute_update("DROP TABLE pass_verifications")

        response = self._post('/api/scanner/verify', {'passId': pass_id, 'studentId': student_id})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()['error_type'], 'INTERNAL_ERROR')

    def test_resend_and_history(self):
        student_id, pass_id = self._issue()

        resend = self._post(f'/api/students/{student_id}/resend-pass')
        missing = self._post('/api/students/999/resend-pass')
        history = self.client.get(f'/api/students/{student_id}/pass-history')

        self.assertEqual(resend.status_code, 200)
        self.assertEqual(resend.get_json()['pass_id'], pass_id)
        self.assertEqual(missing.status_code, 400)
        self.assertEqual(len(history.get_json()['history']), 2)

    def test_failed_email_is_reported_per_student(self):
        self.mailer.fail = True

        response = self._post('/api/students/generate-passes', {
            'students': [{'name': 'Alice', 'email': 'alice@x.com', 'roll_number': 'R1'}]
        })

        body = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(body['summary']['failed'], 1)
        self.assertIn('Failed to send email', body['results'][0]['message'])

    def test_scanner_summary(self):
        student_id, pass_id = self._issue()
        self._issue('Bob', 'bob@x.com', 'R2')
        self._post('/api/scanner/verify', {'passId': pass_id, 'studentId': student_id})

        summary = self.client.get('/api/scanner/summary').get_json()['summary']

        self.assertEqual((summary['issued'], summary['verified'], summary['pending']), (2, 1, 1))

    def test_entry_report_download(self):
        self._issue()

        response = self.client.get('/api/reports/entries?format=csv')

        self.assertEqual(response.status_code, 200)
        self.assertIn('attachment', response.headers['Content-Disposition'])
        self.assertIn(b'alice@x.com', response.data)
        response.close()

    def test_entry_report_bad_format(self):
        self._issue()

        response = self.client.get('/api/reports/entries?format=pdf')

        self.assertEqual(response.status_code, 400)


class TestSuppressedMail(unittest.TestCase):

    def test_testing_config_keeps_mail_in_outbox(self):
        tmpdir = tempfile.mkdtemp(prefix='passdesk-api-')
        app = create_app('testing', overrides={'DATABASE_PATH': os.path.join(tmpdir, 'api.db')})
        self.addCleanup(shutil.rmtree, tmpdir, True)
        self.addCleanup(app.extensions['passdesk']['db'].close_all_connections)

        response = app.test_client().post('/api/students/generate-passes', json={
            'students': [{'name': 'Alice', 'email': 'alice@x.com', 'roll_number': 'R1'}]
        })

        self.assertEqual(response.get_json()['summary']['successful'], 1)
        outbox = app.extensions['passdesk']['mailer'].outbox
        self.assertEqual([m['To'] for m in outbox], ['alice@x.com'])


if __name__ == '__main__':
    unittest.main()
