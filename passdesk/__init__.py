# PassDesk Event Pass System - App Package
"""
Main application package for the PassDesk event pass system.
Students are imported, issued single-use QR passes by email, and admitted at
the door by scanning those passes.
"""

__version__ = "1.0.0"
__description__ = "Event pass issuance and single-use QR verification"

# Import core components for easy access
from .modules.database_manager import DatabaseManager
from .modules.student_directory import StudentDirectory, Student, CandidateStudent
from .modules.qr_generator import QRGenerator, PassPayload
from .modules.pass_mailer import PassMailer
from .modules.duplicate_resolver import resolve_duplicates
from .modules.pass_issuer import PassIssuer
from .modules.pass_verifier import PassVerifier
from .modules.report_generator import ReportGenerator

__all__ = [
    'DatabaseManager',
    'StudentDirectory',
    'Student',
    'CandidateStudent',
    'QRGenerator',
    'PassPayload',
    'PassMailer',
    'resolve_duplicates',
    'PassIssuer',
    'PassVerifier',
    'ReportGenerator'
]
