"""
Pass Verifier Module - PassDesk Event Pass System

Decides whether a scanned pass may enter. Every pass is single use: per
(pass_id, student_id) pair the state moves from UNVERIFIED (no record, or a
record with verification_count = 0) to VERIFIED (verification_count = 1) and
never back.

The check and the write happen in one BEGIN IMMEDIATE transaction, so two
scanners presenting the same pass at the same moment are serialised by the
store's write lock; the upsert is additionally guarded on
verification_count = 0. Rejections write nothing. Any store failure is
reported as INTERNAL_ERROR and the pass is not admitted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from passdesk.errors import (AlreadyUsedError, InternalError, InvalidPassError,
                             PassDeskError, ValidationError)
from passdesk.modules.database_manager import utc_now

STATE_UNVERIFIED = 'UNVERIFIED'
STATE_VERIFIED = 'VERIFIED'


@dataclass
class VerificationRecord:
    """Usage record of one pass for one student."""
    pass_id: str
    student_id: int
    verification_count: int
    last_verified_at: Optional[str]

    @property
    def state(self) -> str:
        return STATE_VERIFIED if self.verification_count > 0 else STATE_UNVERIFIED


def _display_time(timestamp: Optional[str]) -> str:
    if not timestamp:
        return 'an unknown time'
    try:
        return datetime.fromisoformat(timestamp).strftime('%Y-%m-%d %H:%M:%S %Z').strip()
    except ValueError:
        return timestamp


class PassVerifier:
    """
    Single-use pass verification against the durable store.
    """

    def __init__(self, database_manager, qr_generator=None):
        """
        Args:
            database_manager: Database manager instance
            qr_generator: QRGenerator used by verify_scan to decode raw QR text
        """
        self.db = database_manager
        self.qr_generator = qr_generator
        self.logger = logging.getLogger(__name__)

    def verify_pass(self, pass_id: Any, student_id: Any) -> Dict[str, Any]:
        """
        Verify a pass and consume it on success.

        Args:
            pass_id: Pass identifier from the QR payload
            student_id: Claimed owner, also from the QR payload

        Returns:
            dict: {'success', 'message', 'student'?, 'verification'?, 'error_type'?}
        """
        try:
            pass_id, student_key = self._parse_inputs(pass_id, student_id)
            return self._verify(pass_id, student_key)

        except (ValidationError, AlreadyUsedError) as e:
            self.logger.info(f"Pass {pass_id} for student {student_id} rejected: {e.error_type}")
            return e.to_result()

        except Exception as e:
            self.logger.error(f"Pass verification failed for {pass_id}/{student_id}: {str(e)}")
            return InternalError('Failed to verify pass').to_result()

    def _parse_inputs(self, pass_id, student_id):
        if pass_id in (None, '') or student_id in (None, ''):
            raise ValidationError('Missing pass ID or student ID')

        pass_id = str(pass_id).strip()

        # only whole numbers (or their string form) name a student
        if isinstance(student_id, bool) or (isinstance(student_id, float) and not student_id.is_integer()):
            raise InvalidPassError('Invalid pass or student not found')
        try:
            student_key = int(student_id)
        except (TypeError, ValueError, OverflowError):
            raise InvalidPassError('Invalid pass or student not found')

        if not pass_id:
            raise ValidationError('Missing pass ID or student ID')
        return pass_id, student_key

    def _verify(self, pass_id: str, student_id: int) -> Dict[str, Any]:
        with self.db.transaction(immediate=True) as conn:
            row = conn.execute(
                """SELECT s.id, s.name, s.email, s.roll_number, s.class_section,
                          p.verification_count, p.last_verified_at
                   FROM students s
                   LEFT JOIN pass_verifications p
                          ON s.id = p.student_id AND p.pass_id = ?
                   WHERE s.id = ? AND s.pass_generated = 1""",
                (pass_id, student_id)
            ).fetchone()

            if row is None:
                raise InvalidPassError('Invalid pass or student not found')

            student = {
                'id': row['id'],
                'name': row['name'],
                'email': row['email'],
                'roll_number': row['roll_number'],
                'class_section': row['class_section']
            }

            if row['verification_count'] and row['verification_count'] > 0:
                raise self._already_used(student, row['verification_count'], row['last_verified_at'])

            now = utc_now()
            cursor = conn.execute(
                """INSERT INTO pass_verifications
                       (pass_id, student_id, verification_count, last_verified_at, created_at, updated_at)
                   VALUES (?, ?, 1, ?, ?, ?)
                   ON CONFLICT (pass_id, student_id) DO UPDATE SET
                       verification_count = 1,
                       last_verified_at = excluded.last_verified_at,
                       updated_at = excluded.updated_at
                   WHERE pass_verifications.verification_count = 0""",
                (pass_id, student_id, now, now, now)
            )

            if cursor.rowcount != 1:
                existing = conn.execute(
                    """SELECT verification_count, last_verified_at FROM pass_verifications
                       WHERE pass_id = ? AND student_id = ?""",
                    (pass_id, student_id)
                ).fetchone()
                raise self._already_used(student, existing['verification_count'],
                                         existing['last_verified_at'])

        self.logger.info(f"Pass {pass_id} verified for student {student_id} ({student['email']})")
        return {
            'success': True,
            'message': 'Pass verified successfully',
            'student': student,
            'verification': {
                'count': 1,
                'lastVerifiedAt': now
            }
        }

    @staticmethod
    def _already_used(student, count, last_verified_at) -> AlreadyUsedError:
        return AlreadyUsedError(
            f"Pass already used at {_display_time(last_verified_at)}",
            {
                'student': {
                    'name': student['name'],
                    'email': student['email'],
                    'roll_number': student['roll_number']
                },
                'verification': {
                    'count': count,
                    'lastVerifiedAt': last_verified_at
                }
            }
        )

    def verify_scan(self, qr_data: str) -> Dict[str, Any]:
        """
        Verify raw text read from a QR code.

        Returns:
            dict: Same shape as verify_pass
        """
        try:
            payload = self.qr_generator.decode_payload(qr_data)
        except PassDeskError as e:
            self.logger.info(f"Unreadable pass scanned: {e.message}")
            return InvalidPassError('Invalid pass or student not found').to_result()

        return self.verify_pass(payload.id, payload.studentId)

    def get_verification(self, pass_id: str, student_id: int) -> Optional[VerificationRecord]:
        row = self.db.execute_query(
            """SELECT pass_id, student_id, verification_count, last_verified_at
               FROM pass_verifications WHERE pass_id = ? AND student_id = ?""",
            (pass_id, student_id),
            fetch_all=False
        )
        return VerificationRecord(**row) if row else None

    def get_recent_entries(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent successful verifications with student details."""
        return self.db.execute_query(
            """SELECT p.pass_id, p.last_verified_at, s.id AS student_id, s.name, s.email,
                      s.roll_number, s.class_section
               FROM pass_verifications p
               JOIN students s ON s.id = p.student_id
               WHERE p.verification_count > 0
               ORDER BY p.last_verified_at DESC
               LIMIT ?""",
            (limit,)
        )

    def get_entry_summary(self) -> Dict[str, Any]:
        """
        Door dashboard counters.

        Returns:
            dict: issued, verified and pending counts plus recent entries
        """
        counts = self.db.execute_query(
            """SELECT
                   (SELECT COUNT(*) FROM students WHERE pass_generated = 1) AS issued,
                   (SELECT COUNT(DISTINCT p.student_id) FROM pass_verifications p
                      JOIN students s ON s.id = p.student_id
                     WHERE p.verification_count > 0 AND s.pass_generated = 1) AS verified""",
            fetch_all=False
        )
        issued = counts['issued'] if counts else 0
        verified = counts['verified'] if counts else 0
        return {
            'issued': issued,
            'verified': verified,
            'pending': max(issued - verified, 0),
            'recent_entries': self.get_recent_entries()
        }
