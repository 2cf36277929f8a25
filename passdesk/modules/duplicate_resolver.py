"""
Duplicate Resolver Module - PassDesk Event Pass System

Splits an uploaded batch of candidate students into the ones that are safe to
issue and the ones that collide with an existing student. The check is
advisory: the caller decides whether to drop duplicates or force them
through. Nothing here touches the database.

Matching compares normalized values (trimmed, lower-cased email and roll
number) while the output keeps the candidate exactly as uploaded. When a
candidate's email matches one directory row and its roll number matches a
different row, the email match is the one reported.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from passdesk.modules.student_directory import CandidateStudent, Student

REASON_EMAIL = 'email'
REASON_ROLL_NUMBER = 'roll_number'
REASON_BOTH = 'both'

SOURCE_DIRECTORY = 'directory'
SOURCE_BATCH = 'batch'

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or '').strip().lower()


def normalize_roll_number(roll_number: Optional[str]) -> str:
    return (roll_number or '').strip().lower()


@dataclass
class DuplicateRecord:
    """A candidate that collides with an existing student or an earlier batch row."""
    candidate: CandidateStudent
    reason: str
    source: str
    existing: Union[Student, CandidateStudent]

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.existing, Student):
            existing = self.existing.public_fields()
        else:
            existing = self.existing.to_dict()
        return {
            'student': self.candidate.to_dict(),
            'reason': self.reason,
            'source': self.source,
            'existing': existing
        }


@dataclass
class ResolutionResult:
    unique: List[CandidateStudent]
    duplicates: List[DuplicateRecord]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'unique': [candidate.to_dict() for candidate in self.unique],
            'duplicates': [duplicate.to_dict() for duplicate in self.duplicates]
        }


def _classify(email_match, roll_match):
    if email_match is not None and roll_match is not None:
        return REASON_BOTH, email_match
    if email_match is not None:
        return REASON_EMAIL, email_match
    if roll_match is not None:
        return REASON_ROLL_NUMBER, roll_match
    return None, None


def resolve_duplicates(candidates: Iterable[CandidateStudent],
                       directory: Iterable[Student],
                       within_batch: bool = False) -> ResolutionResult:
    """
    Partition candidates into unique and duplicate sets.

    Args:
        candidates: Upload rows in upload order
        directory: Snapshot of existing students
        within_batch: Also flag candidates that repeat an earlier unique
            candidate of the same batch. Directory matches take precedence.

    Returns:
        ResolutionResult: unique candidates (order preserved) and duplicates
    """
    by_email = {}
    by_roll = {}
    for student in directory:
        # setdefault keeps the first row if the snapshot itself has collisions
        by_email.setdefault(normalize_email(student.email), student)
        by_roll.setdefault(normalize_roll_number(student.roll_number), student)

    batch_email = {}
    batch_roll = {}
    unique = []
    duplicates = []

    for candidate in candidates:
        email_key = normalize_email(candidate.email)
        roll_key = normalize_roll_number(candidate.roll_number)

        reason, existing = _classify(by_email.get(email_key), by_roll.get(roll_key))
        if reason:
            duplicates.append(DuplicateRecord(candidate, reason, SOURCE_DIRECTORY, existing))
            continue

        if within_batch:
            reason, existing = _classify(batch_email.get(email_key), batch_roll.get(roll_key))
            if reason:
                duplicates.append(DuplicateRecord(candidate, reason, SOURCE_BATCH, existing))
                continue
            batch_email.setdefault(email_key, candidate)
            batch_roll.setdefault(roll_key, candidate)

        unique.append(candidate)

    logger.info(f"Duplicate check: {len(unique)} unique, {len(duplicates)} duplicate "
                f"out of {len(unique) + len(duplicates)} candidates")
    return ResolutionResult(unique=unique, duplicates=duplicates)
