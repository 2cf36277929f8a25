"""
Report Generator Module - PassDesk Event Pass System

Exports the event entry report: every student with their pass status and,
for those who came through the door, when their pass was scanned. Reports are
written to the reports folder as Excel (with a summary sheet) or CSV.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List

import pandas as pd

REPORT_COLUMNS = {
    'name': 'Name',
    'email': 'Email',
    'roll_number': 'Roll Number',
    'class_section': 'Class/Section',
    'pass_generated': 'Pass Generated',
    'pass_generated_at': 'Pass Generated At',
    'entered': 'Entered',
    'entered_at': 'Entered At',
}


class ReportGenerator:
    """
    Entry report export to Excel and CSV.
    """

    def __init__(self, database_manager, output_dir='reports'):
        """
        Args:
            database_manager: Database manager instance
            output_dir (str): Directory reports are written to
        """
        self.db = database_manager
        self.output_dir = str(output_dir)
        self.supported_formats = ['excel', 'csv']
        self.logger = logging.getLogger(__name__)

    def get_entry_records(self) -> List[Dict[str, Any]]:
        rows = self.db.execute_query(
            """SELECT s.name, s.email, s.roll_number, s.class_section,
                      s.pass_generated, s.pass_generated_at,
                      MAX(p.last_verified_at) AS entered_at
               FROM students s
               LEFT JOIN pass_verifications p
                      ON p.student_id = s.id AND p.verification_count > 0
               GROUP BY s.id
               ORDER BY s.name"""
        )
        for row in rows:
            row['pass_generated'] = bool(row['pass_generated'])
            row['entered'] = row['entered_at'] is not None
        return rows

    def generate_entry_report(self, output_format: str = 'excel') -> Dict[str, Any]:
        """
        Write the entry report to disk.

        Args:
            output_format (str): 'excel' or 'csv'

        Returns:
            dict: {'success', 'filename', 'filepath', 'format', 'size'} or an error
        """
        if output_format not in self.supported_formats:
            return {
                'success': False,
                'error': f'Unsupported output format: {output_format}'
            }

        records = self.get_entry_records()
        if not records:
            return {
                'success': False,
                'error': 'No students to report on'
            }

        os.makedirs(self.output_dir, exist_ok=True)
        df = pd.DataFrame(records, columns=list(REPORT_COLUMNS)).rename(columns=REPORT_COLUMNS)

        extension = 'xlsx' if output_format == 'excel' else 'csv'
        filename = f"entry_report_{datetime.now().strftime('%Y%m%d_%H%M%S')}.{extension}"
        filepath = os.path.join(self.output_dir, filename)

        try:
            if output_format == 'excel':
                summary = pd.DataFrame([{
                    'Students': len(df),
                    'Passes Issued': int(df['Pass Generated'].sum()),
                    'Entered': int(df['Entered'].sum()),
                    'Generated At': datetime.now().strftime('%Y-%m-%d %H:%M:%S')
                }])
                with pd.ExcelWriter(filepath, engine='openpyxl') as writer:
                    df.to_excel(writer, sheet_name='Entries', index=False)
                    summary.to_excel(writer, sheet_name='Summary', index=False)
            else:
                df.to_csv(filepath, index=False, encoding='utf-8')

        except (OSError, ValueError) as e:
            self.logger.error(f"Entry report generation failed: {str(e)}")
            return {
                'success': False,
                'error': str(e)
            }

        self.logger.info(f"Report generated successfully: {filename}")
        return {
            'success': True,
            'filename': filename,
            'filepath': filepath,
            'format': output_format,
            'size': os.path.getsize(filepath)
        }
