"""
QR Generator Module - PassDesk Event Pass System

This module mints pass identifiers, builds the QR payload that travels from
issuance to the scanner, and renders it as a PNG. The payload is plain JSON
with a fixed key order so that what the scanner reads back is exactly what
was issued.

Payload format:
    {"id": <pass id>, "studentId": <student id>, "name": ..., "email": ...,
     "rollNumber": ...}
"""

import io
import json
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import qrcode

from passdesk.errors import InvalidPassError

ERROR_CORRECTION_LEVELS = {
    'L': qrcode.constants.ERROR_CORRECT_L,  # ~7% error correction
    'M': qrcode.constants.ERROR_CORRECT_M,  # ~15% error correction
    'Q': qrcode.constants.ERROR_CORRECT_Q,  # ~25% error correction
    'H': qrcode.constants.ERROR_CORRECT_H,  # ~30% error correction
}

PAYLOAD_FIELDS = ('id', 'studentId', 'name', 'email', 'rollNumber')


@dataclass
class PassPayload:
    """Data carried inside a pass QR code."""
    id: str
    studentId: Union[int, str]
    name: str
    email: str
    rollNumber: str

    def to_dict(self) -> Dict[str, Any]:
        return {field: getattr(self, field) for field in PAYLOAD_FIELDS}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(',', ':'), ensure_ascii=False)


class QRGenerator:
    """
    Creates pass identifiers, encodes and decodes pass payloads, and renders
    QR images.
    """

    def __init__(self, box_size: int = 12, border: int = 2,
                 error_correction: str = 'H', output_dir: Optional[str] = None):
        """
        Args:
            box_size (int): Size of each QR module in pixels
            border (int): Quiet zone width in modules
            error_correction (str): One of L, M, Q, H
            output_dir (str): Where save_qr_image writes PNG files
        """
        self.logger = logging.getLogger(__name__)
        self.settings = {
            'box_size': box_size,
            'border': border,
            'error_correction': ERROR_CORRECTION_LEVELS[error_correction],
            'fill_color': 'black',
            'back_color': 'white'
        }
        self.output_dir = output_dir

    @staticmethod
    def generate_pass_id() -> str:
        """Mint a new random pass identifier (UUID4)."""
        return str(uuid.uuid4())

    def build_payload(self, pass_id: str, student: Dict[str, Any]) -> PassPayload:
        """
        Bind a pass identifier to the student's identity fields.

        Args:
            pass_id (str): Freshly minted pass identifier
            student (dict): Student row with id, name, email, roll_number
        """
        return PassPayload(
            id=pass_id,
            studentId=student['id'],
            name=student['name'],
            email=student['email'],
            rollNumber=student['roll_number']
        )

    def encode_payload(self, payload: PassPayload) -> str:
        return payload.to_json()

    def decode_payload(self, qr_data: str) -> PassPayload:
        """
        Parse scanned QR text back into a PassPayload.

        Raises:
            InvalidPassError: The text is not a pass payload
        """
        try:
            decoded = json.loads(qr_data)
        except (TypeError, ValueError):
            raise InvalidPassError('Invalid QR code format')

        if not isinstance(decoded, dict):
            raise InvalidPassError('Invalid QR code format')

        missing = [field for field in PAYLOAD_FIELDS if decoded.get(field) in (None, '')]
        if missing:
            raise InvalidPassError(f"Missing required field: {missing[0]}")

        return PassPayload(**{field: decoded[field] for field in PAYLOAD_FIELDS})

    def render_qr_png(self, data: str) -> bytes:
        """
        Render QR code data as PNG bytes.

        Args:
            data (str): Text to encode

        Returns:
            bytes: PNG image
        """
        qr = qrcode.QRCode(
            version=None,
            error_correction=self.settings['error_correction'],
            box_size=self.settings['box_size'],
            border=self.settings['border']
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=self.settings['fill_color'],
            back_color=self.settings['back_color']
        )

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        return buffer.getvalue()

    def save_qr_image(self, png_bytes: bytes, filename: str) -> str:
        """
        Write a rendered QR image to output_dir.

        Returns:
            str: Path of the written file
        """
        if not self.output_dir:
            raise ValueError('QRGenerator has no output_dir configured')

        os.makedirs(self.output_dir, exist_ok=True)
        file_path = os.path.join(self.output_dir, filename)
        with open(file_path, 'wb') as f:
            f.write(png_bytes)

        self.logger.info(f"QR code image saved to {file_path}")
        return file_path
