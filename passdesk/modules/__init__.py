# PassDesk Event Pass System - Modules Package
"""
Core business logic modules for the PassDesk event pass system.
"""

# Module descriptions
MODULES = {
    'database_manager': 'SQLite store client, schema and transactions',
    'student_directory': 'Student registry and pass status',
    'qr_generator': 'Pass identifiers, QR payloads and images',
    'pass_mailer': 'Pass email delivery',
    'duplicate_resolver': 'Upload batch duplicate detection',
    'pass_issuer': 'Batch pass issuance',
    'pass_verifier': 'Single-use pass verification',
    'report_generator': 'Entry report export'
}


def get_module_info():
    """Get information about available modules"""
    return MODULES
