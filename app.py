"""
PassDesk Event Pass System - Main Application

This module builds the Flask application: it loads configuration, constructs
the store client and the pass components once, and exposes them through JSON
endpoints for the admin console and the door scanner.

Endpoints:
- GET  /health
- GET  /api/students                          read-only student listing
- POST /api/students                          add one student
- POST /api/students/check-duplicates         classify an uploaded batch
- POST /api/students/generate-passes          issue and email passes
- POST /api/students/<id>/resend-pass         email an issued pass again
- GET  /api/students/<id>/pass-history        issuance email attempts
- POST /api/scanner/verify                    verify a scanned pass
- GET  /api/scanner/summary                   door counters
- GET  /api/reports/entries?format=excel|csv  entry report download
"""

import atexit
import logging

from flask import Blueprint, Flask, current_app, jsonify, request, send_file

from config import init_config
from passdesk import __version__
from passdesk.errors import status_for
from passdesk.modules import get_module_info
from passdesk.modules.database_manager import DatabaseManager
from passdesk.modules.duplicate_resolver import resolve_duplicates
from passdesk.modules.pass_issuer import PassIssuer
from passdesk.modules.pass_mailer import PassMailer
from passdesk.modules.pass_verifier import PassVerifier
from passdesk.modules.qr_generator import QRGenerator
from passdesk.modules.report_generator import ReportGenerator
from passdesk.modules.student_directory import CandidateStudent, StudentDirectory

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)


def create_app(config_name=None, overrides=None, mailer=None):
    """
    Application factory.

    Args:
        config_name (str): Key of the config mapping (development, testing, production)
        overrides (dict): Values applied on top of the selected config
        mailer: Replacement for the SMTP mailer (anything with send_pass_email)
    """
    app = Flask(__name__)
    init_config(app, config_name)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format=app.config['LOG_FORMAT']
    )

    db_manager = DatabaseManager(app.config['DATABASE_PATH'],
                                 timeout=app.config['DATABASE_QUERY_TIMEOUT'])
    db_manager.initialize_database()

    qr_generator = QRGenerator(
        box_size=app.config['QR_CODE_BOX_SIZE'],
        border=app.config['QR_CODE_BORDER'],
        error_correction=app.config['QR_CODE_ERROR_CORRECT'],
        output_dir=str(app.config['QR_CODES_FOLDER'])
    )
    student_directory = StudentDirectory(db_manager)
    pass_mailer = mailer or PassMailer.from_config(app.config)

    app.extensions['passdesk'] = {
        'db': db_manager,
        'qr_generator': qr_generator,
        'students': student_directory,
        'mailer': pass_mailer,
        'issuer': PassIssuer(db_manager, student_directory, qr_generator, pass_mailer,
                             save_images=app.config['SAVE_QR_IMAGES']),
        'verifier': PassVerifier(db_manager, qr_generator),
        'reports': ReportGenerator(db_manager, app.config['REPORTS_FOLDER'])
    }

    app.register_blueprint(api)

    @app.teardown_appcontext
    def release_connection(exc):
        db_manager.close_connection()

    atexit.register(db_manager.close_all_connections)

    logger.info(f"PassDesk started with database {app.config['DATABASE_PATH']}")
    return app


def _component(name):
    return current_app.extensions['passdesk'][name]


def _result_response(result, success_status=200):
    if result.get('success'):
        return jsonify(result), success_status
    return jsonify(result), status_for(result.get('error_type'))


def _json_body():
    """Request JSON as a dict; anything else reads as an empty body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _students_from_request():
    data = _json_body()
    students = data.get('students')
    if not isinstance(students, list) or not students:
        return None
    return students


@api.route('/health')
def health():
    status = _component('db').check_connection()
    status['version'] = __version__
    status['modules'] = sorted(get_module_info())
    return jsonify(status), 200 if status['connected'] else 503


@api.route('/api/students', methods=['GET'])
def list_students():
    """Read-only projection of the student directory"""
    try:
        query = request.args.get('q', '').strip()
        directory = _component('students')
        students = directory.search_students(query) if query else directory.get_all_students()
        return jsonify({
            'success': True,
            'students': [student.to_dict() for student in students]
        })

    except Exception as e:
        logger.error(f"Student listing error: {str(e)}")
        return jsonify({'success': False, 'message': 'Failed to fetch students'}), 500


@api.route('/api/students', methods=['POST'])
def add_student():
    try:
        data = _json_body()
        result = _component('students').add_student(data)
        return _result_response(result)

    except Exception as e:
        logger.error(f"Add student error: {str(e)}")
        return jsonify({'success': False, 'message': 'Failed to add student'}), 500


@api.route('/api/students/check-duplicates', methods=['POST'])
def check_duplicates():
    """Split an uploaded batch into new students and duplicates"""
    try:
        students = _students_from_request()
        if students is None:
            return jsonify({'success': False, 'message': 'No students provided'}), 400

        candidates = [CandidateStudent.from_dict(row) for row in students if isinstance(row, dict)]
        resolution = resolve_duplicates(
            candidates,
            _component('students').snapshot(),
            within_batch=current_app.config['DUPLICATE_CHECK_WITHIN_BATCH']
        )

        response = {'success': True}
        response.update(resolution.to_dict())
        return jsonify(response)

    except Exception as e:
        logger.error(f"Duplicate check error: {str(e)}")
        return jsonify({'success': False, 'message': 'Failed to check duplicates'}), 500


@api.route('/api/students/generate-passes', methods=['POST'])
def generate_passes():
    """Issue passes and email them to the selected students"""
    try:
        students = _students_from_request()
        if students is None:
            return jsonify({'success': False, 'message': 'No students provided'}), 400

        return jsonify(_component('issuer').issue_passes(students))

    except Exception as e:
        logger.error(f"Pass generation error: {str(e)}")
        return jsonify({'success': False, 'message': 'Failed to generate passes'}), 500


@api.route('/api/students/<int:student_id>/resend-pass', methods=['POST'])
def resend_pass(student_id):
    try:
        return _result_response(_component('issuer').resend_pass(student_id))

    except Exception as e:
        logger.error(f"Resend pass error: {str(e)}")
        return jsonify({'success': False, 'message': 'Failed to resend pass'}), 500


@api.route('/api/students/<int:student_id>/pass-history', methods=['GET'])
def pass_history(student_id):
    try:
        return jsonify({
            'success': True,
            'history': _component('issuer').get_pass_history(student_id)
        })

    except Exception as e:
        logger.error(f"Pass history error: {str(e)}")
        return jsonify({'success': False, 'message': 'Failed to fetch pass history'}), 500


@api.route('/api/scanner/verify', methods=['POST'])
def verify_pass():
    """Verify a scanned pass; accepts {passId, studentId} or the raw {qrData}"""
    try:
        data = _json_body()
        verifier = _component('verifier')

        if data.get('qrData') and not data.get('passId'):
            result = verifier.verify_scan(data['qrData'])
        else:
            result = verifier.verify_pass(data.get('passId'), data.get('studentId'))

        return _result_response(result)

    except Exception as e:
        logger.error(f"Pass verification route error: {str(e)}")
        return jsonify({
            'success': False,
            'message': 'Failed to verify pass',
            'error_type': 'INTERNAL_ERROR'
        }), 500


@api.route('/api/scanner/summary', methods=['GET'])
def scanner_summary():
    try:
        summary = _component('verifier').get_entry_summary()
        return jsonify({'success': True, 'summary': summary})

    except Exception as e:
        logger.error(f"Scanner summary error: {str(e)}")
        return jsonify({'success': False, 'message': 'Failed to load summary'}), 500


@api.route('/api/reports/entries', methods=['GET'])
def entry_report():
    output_format = request.args.get('format', 'excel')
    result = _component('reports').generate_entry_report(output_format)

    if not result['success']:
        return jsonify({'success': False, 'message': result['error']}), 400

    return send_file(result['filepath'], as_attachment=True, download_name=result['filename'])


if __name__ == '__main__':
    application = create_app()
    application.run(debug=application.config['DEBUG'], host='0.0.0.0', port=5000, threaded=True)
