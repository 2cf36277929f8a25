"""
Pass Issuer Module - PassDesk Event Pass System

Issues event passes for approved candidates. For every candidate the issuer
resolves or creates the student row, mints a pass identifier, renders the QR
code, emails it, and only then marks the student as issued. A failed email
leaves the student unissued, so retrying the same candidate later simply
reuses the row.

Each candidate is handled on its own: one bad row never stops the batch, and
store writes for a candidate commit independently of the others. The batch
result lists one outcome per candidate plus aggregate counts.
"""

import logging
import sqlite3
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional, Union

from passdesk.errors import (ConflictError, EmailDeliveryError,
                             PassDeskError, ValidationError)
from passdesk.modules.database_manager import utc_now
from passdesk.modules.student_directory import CandidateStudent, validate_candidate

STATUS_SUCCESS = 'success'
STATUS_SKIPPED = 'skipped'
STATUS_FAILED = 'failed'

EMAIL_PENDING = 'pending'
EMAIL_SENT = 'sent'
EMAIL_FAILED = 'failed'


@dataclass
class IssuanceResult:
    """Outcome of issuing a pass to one candidate."""
    email: str
    status: str
    message: Optional[str] = None
    student_id: Optional[int] = None
    pass_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


class PassIssuer:
    """
    Batch pass issuance with per-candidate outcome reporting.
    """

    def __init__(self, database_manager, student_directory, qr_generator, mailer,
                 save_images: bool = False):
        """
        Args:
            database_manager: Database manager instance
            student_directory: StudentDirectory used to resolve or create rows
            qr_generator: QRGenerator for pass ids, payloads and images
            mailer: PassMailer (anything with send_pass_email)
            save_images (bool): Also write each QR PNG to the generator's output_dir
                and attach it from disk
        """
        self.db = database_manager
        self.directory = student_directory
        self.qr_generator = qr_generator
        self.mailer = mailer
        self.save_images = save_images
        self.logger = logging.getLogger(__name__)

    def issue_passes(self, students_data: Iterable[Union[Dict[str, Any], CandidateStudent]]) -> Dict[str, Any]:
        """
        Issue passes for a batch of candidates.

        Args:
            students_data: Upload rows or CandidateStudent objects

        Returns:
            dict: {'success', 'summary': {'total', 'successful', 'skipped', 'failed'},
                   'results': [...]}
        """
        results: List[IssuanceResult] = []
        for row in students_data:
            results.append(self.issue_pass(row))

        summary = {
            'total': len(results),
            'successful': sum(1 for r in results if r.status == STATUS_SUCCESS),
            'skipped': sum(1 for r in results if r.status == STATUS_SKIPPED),
            'failed': sum(1 for r in results if r.status == STATUS_FAILED)
        }

        self.logger.info(f"Pass issuance completed: {summary['successful']}/{summary['total']} issued, "
                         f"{summary['skipped']} skipped, {summary['failed']} failed")
        return {
            'success': True,
            'summary': summary,
            'results': [result.to_dict() for result in results]
        }

    def issue_pass(self, row: Union[Dict[str, Any], CandidateStudent]) -> IssuanceResult:
        """
        Issue a pass for a single candidate. Never raises for per-candidate
        problems; they come back as a failed result.
        """
        if isinstance(row, CandidateStudent):
            candidate = row
        else:
            candidate = CandidateStudent.from_dict(row if isinstance(row, dict) else {})
        email = candidate.email or 'unknown'
        history_id = None

        try:
            validate_candidate(candidate)

            with self.db.transaction(immediate=True) as conn:
                student = self.directory.resolve_or_create(conn, candidate)

            if student.pass_generated:
                return IssuanceResult(email=email, status=STATUS_SKIPPED,
                                      message='Pass already generated', student_id=student.id)

            pass_id = self.qr_generator.generate_pass_id()
            payload = self.qr_generator.build_payload(pass_id, student.to_dict())
            qr_data = self.qr_generator.encode_payload(payload)
            qr_image = self.qr_generator.render_qr_png(qr_data)

            history_id = self._record_history(student.id, pass_id)
            self._deliver(student, qr_image, pass_id, history_id)

            with self.db.transaction(immediate=True) as conn:
                if not self.directory.mark_pass_generated(conn, student.id, qr_data):
                    raise ConflictError('Pass was generated concurrently by another request')
                self._finish_history(conn, history_id, EMAIL_SENT)

            self.logger.info(f"Pass {pass_id} issued to student {student.id} ({student.email})")
            return IssuanceResult(email=email, status=STATUS_SUCCESS,
                                  student_id=student.id, pass_id=pass_id)

        except PassDeskError as e:
            self.logger.warning(f"Pass issuance failed for {email}: {e.message}")
            self._abandon_history(history_id, e.message)
            return IssuanceResult(email=email, status=STATUS_FAILED, message=e.message)

        except sqlite3.IntegrityError as e:
            self.logger.warning(f"Pass issuance conflict for {email}: {str(e)}")
            self._abandon_history(history_id, str(e))
            return IssuanceResult(email=email, status=STATUS_FAILED,
                                  message='Student with this email or roll number already exists')

        except sqlite3.Error as e:
            self.logger.error(f"Database error issuing pass for {email}: {str(e)}")
            self._abandon_history(history_id, str(e))
            return IssuanceResult(email=email, status=STATUS_FAILED,
                                  message='Database unavailable')

        except Exception as e:
            self.logger.error(f"Unexpected error issuing pass for {email}: {str(e)}")
            self._abandon_history(history_id, str(e))
            return IssuanceResult(email=email, status=STATUS_FAILED,
                                  message='Failed to generate pass')

    def _deliver(self, student, qr_image: bytes, pass_id: str, history_id: int) -> None:
        qr_image_path = None
        if self.save_images:
            qr_image_path = self.qr_generator.save_qr_image(qr_image, f"pass_{pass_id}.png")

        sent = self.mailer.send_pass_email(
            recipient=student.email,
            name=student.name,
            roll_number=student.roll_number,
            class_section=student.class_section,
            qr_image=None if qr_image_path else qr_image,
            qr_image_path=qr_image_path
        )

        if not sent.get('success'):
            error = sent.get('error') or 'Unknown error'
            with self.db.transaction() as conn:
                self._finish_history(conn, history_id, EMAIL_FAILED, error)
            raise EmailDeliveryError(f"Failed to send email: {error}")

    def resend_pass(self, student_id: int) -> Dict[str, Any]:
        """
        Email an already issued pass again using the stored payload. The pass
        identifier and the student's issuance state are left untouched.

        Returns:
            dict: Resend result
        """
        try:
            student = self.directory.get_student(student_id)
            if not student or not student.pass_generated:
                raise ValidationError('Student not found or pass not generated')

            payload = self.qr_generator.decode_payload(student.qr_payload)
            qr_image = self.qr_generator.render_qr_png(student.qr_payload)

            history_id = self._record_history(student.id, payload.id)
            self._deliver(student, qr_image, payload.id, history_id)
            with self.db.transaction() as conn:
                self._finish_history(conn, history_id, EMAIL_SENT)

            self.logger.info(f"Pass {payload.id} re-sent to {student.email}")
            return {
                'success': True,
                'message': f"Pass re-sent to {student.email}",
                'student_id': student.id,
                'pass_id': payload.id
            }

        except PassDeskError as e:
            return e.to_result()

    def get_pass_history(self, student_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Issuance email attempts, newest first."""
        query = """SELECT h.id, h.student_id, h.pass_id, h.generated_at, h.email_status,
                          h.email_sent_at, h.error_message, s.name, s.email
                   FROM pass_history h
                   JOIN students s ON s.id = h.student_id"""
        params = ()
        if student_id is not None:
            query += " WHERE h.student_id = ?"
            params = (student_id,)
        query += " ORDER BY h.id DESC"
        return self.db.execute_query(query, params)

    def _record_history(self, student_id: int, pass_id: str) -> int:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO pass_history (student_id, pass_id, generated_at, email_status)
                   VALUES (?, ?, ?, ?)""",
                (student_id, pass_id, utc_now(), EMAIL_PENDING)
            )
            return cursor.lastrowid

    def _abandon_history(self, history_id: Optional[int], error: str) -> None:
        """Mark a still pending history row as failed once its attempt is given up."""
        if history_id is None:
            return
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """UPDATE pass_history SET email_status = ?, error_message = ?
                       WHERE id = ? AND email_status = ?""",
                    (EMAIL_FAILED, error, history_id, EMAIL_PENDING)
                )
        except sqlite3.Error as e:
            self.logger.error(f"Could not close history row {history_id}: {str(e)}")

    def _finish_history(self, conn, history_id: int, status: str, error: Optional[str] = None) -> None:
        conn.execute(
            """UPDATE pass_history
               SET email_status = ?, email_sent_at = ?, error_message = ?
               WHERE id = ?""",
            (status, utc_now() if status == EMAIL_SENT else None, error, history_id)
        )
