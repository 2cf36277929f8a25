"""
Student Directory Module - PassDesk Event Pass System

This module is the registry of enrolled students and their pass status. It is
the only place that writes the students table. Other components read
snapshots from it (duplicate resolver), resolve-or-create rows through it
(pass issuer) and join against it (pass verifier).

Features:
- Candidate row cleaning and validation
- Student creation with email/roll number conflict checks
- Resolve-or-create for pass issuance
- Read-only listing projection and search
- Marking a student's pass as generated
"""

import logging
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from passdesk.errors import DuplicateStudentError, ValidationError
from passdesk.modules.database_manager import utc_now

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

# Column widths of the students table; keeps every payload within QR capacity
FIELD_LIMITS = {
    'name': 100,
    'email': 255,
    'roll_number': 50,
    'class_section': 50,
}

LISTING_COLUMNS = ('id, name, email, roll_number, class_section, '
                   'pass_generated, pass_generated_at, qr_payload')


@dataclass
class CandidateStudent:
    """Unpersisted roster row pending duplicate check and issuance."""
    name: str
    email: str
    roll_number: str
    class_section: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CandidateStudent':
        """Build a candidate from an upload row, trimming every field."""
        def clean(value):
            if value is None:
                return ''
            return str(value).strip()

        return cls(
            name=clean(data.get('name')),
            email=clean(data.get('email')).lower(),
            roll_number=clean(data.get('roll_number')),
            class_section=clean(data.get('class_section')) or None
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Student:
    """Persisted student row."""
    id: int
    name: str
    email: str
    roll_number: str
    class_section: Optional[str]
    pass_generated: bool
    pass_generated_at: Optional[str]
    qr_payload: Optional[str]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Student':
        return cls(
            id=row['id'],
            name=row['name'],
            email=row['email'],
            roll_number=row['roll_number'],
            class_section=row.get('class_section'),
            pass_generated=bool(row['pass_generated']),
            pass_generated_at=row.get('pass_generated_at'),
            qr_payload=row.get('qr_payload')
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def public_fields(self) -> Dict[str, Any]:
        """Fields safe to show door staff."""
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'roll_number': self.roll_number,
            'class_section': self.class_section
        }


def validate_candidate(candidate: CandidateStudent) -> None:
    """
    Raises:
        ValidationError: A required field is empty or too long, or the email is malformed
    """
    if not candidate.name or not candidate.email or not candidate.roll_number:
        raise ValidationError('Missing required fields')

    for field, limit in FIELD_LIMITS.items():
        if len(getattr(candidate, field) or '') > limit:
            raise ValidationError(f'Field too long: {field} (max {limit} characters)')

    if not EMAIL_PATTERN.match(candidate.email):
        raise ValidationError(f'Invalid email address: {candidate.email}')


class StudentDirectory:
    """
    Registry of students and their pass-generation status.
    """

    def __init__(self, database_manager):
        """
        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def add_student(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add a single student without issuing a pass.

        Args:
            data (dict): name, email, roll_number, class_section

        Returns:
            dict: Creation result
        """
        try:
            candidate = CandidateStudent.from_dict(data)
            validate_candidate(candidate)

            with self.db.transaction(immediate=True) as conn:
                existing = self.find_existing(conn, candidate.email, candidate.roll_number)
                if existing:
                    raise DuplicateStudentError(
                        'Student with this email or roll number already exists',
                        {'existing': existing.public_fields()}
                    )
                student = self.create_student(conn, candidate)

            self.logger.info(f"Student added: {student.email} (ID: {student.id})")
            return {
                'success': True,
                'id': student.id,
                'message': 'Student added successfully'
            }

        except (ValidationError, DuplicateStudentError) as e:
            return e.to_result()

    def find_existing(self, conn, email: str, roll_number: str) -> Optional[Student]:
        """
        Find the row matching either email or roll number (case-insensitive).
        An email match wins over a roll number match on a different row.
        """
        rows = conn.execute(
            f"""SELECT {LISTING_COLUMNS} FROM students
                WHERE email = ? COLLATE NOCASE OR roll_number = ? COLLATE NOCASE
                ORDER BY CASE WHEN email = ? COLLATE NOCASE THEN 0 ELSE 1 END, id""",
            (email.strip(), roll_number.strip(), email.strip())
        ).fetchall()
        return Student.from_row(dict(rows[0])) if rows else None

    def create_student(self, conn, candidate: CandidateStudent) -> Student:
        """Insert a candidate as a new student row inside the caller's transaction."""
        now = utc_now()
        cursor = conn.execute(
            """INSERT INTO students (name, email, roll_number, class_section,
                                     created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (candidate.name, candidate.email, candidate.roll_number,
             candidate.class_section, now, now)
        )
        return Student(
            id=cursor.lastrowid,
            name=candidate.name,
            email=candidate.email,
            roll_number=candidate.roll_number,
            class_section=candidate.class_section,
            pass_generated=False,
            pass_generated_at=None,
            qr_payload=None
        )

    def resolve_or_create(self, conn, candidate: CandidateStudent) -> Student:
        """Return the existing row for the candidate, creating one if none exists."""
        existing = self.find_existing(conn, candidate.email, candidate.roll_number)
        if existing:
            return existing
        return self.create_student(conn, candidate)

    def mark_pass_generated(self, conn, student_id: int, qr_payload: str) -> bool:
        """
        Flag the student as issued. Only flips an unissued row.

        Returns:
            bool: True if this call performed the transition
        """
        now = utc_now()
        cursor = conn.execute(
            """UPDATE students
               SET pass_generated = 1, pass_generated_at = ?, qr_payload = ?, updated_at = ?
               WHERE id = ? AND pass_generated = 0""",
            (now, qr_payload, now, student_id)
        )
        return cursor.rowcount == 1

    def get_student(self, student_id: int) -> Optional[Student]:
        row = self.db.execute_query(
            f"SELECT {LISTING_COLUMNS} FROM students WHERE id = ?",
            (student_id,),
            fetch_all=False
        )
        return Student.from_row(row) if row else None

    def get_all_students(self) -> List[Student]:
        """All students, newest first."""
        rows = self.db.execute_query(
            f"SELECT {LISTING_COLUMNS} FROM students ORDER BY created_at DESC, id DESC"
        )
        return [Student.from_row(row) for row in rows]

    def snapshot(self) -> List[Student]:
        """Directory snapshot for duplicate resolution."""
        return self.get_all_students()

    def get_student_count(self, issued_only: bool = False) -> int:
        query = "SELECT COUNT(*) AS total FROM students"
        if issued_only:
            query += " WHERE pass_generated = 1"
        result = self.db.execute_query(query, fetch_all=False)
        return result['total'] if result else 0

    def search_students(self, query: str, limit: int = 20) -> List[Student]:
        """
        Search students by name, email, roll number, or class/section.
        """
        pattern = f"%{query.strip()}%"
        rows = self.db.execute_query(
            f"""SELECT {LISTING_COLUMNS} FROM students
                WHERE name LIKE ? OR email LIKE ? OR roll_number LIKE ? OR class_section LIKE ?
                ORDER BY CASE WHEN roll_number = ? COLLATE NOCASE THEN 0 ELSE 1 END, name
                LIMIT ?""",
            (pattern, pattern, pattern, pattern, query.strip(), limit)
        )
        return [Student.from_row(row) for row in rows]
