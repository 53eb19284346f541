"""
QR code generation for organization invite links
"""

import io
import qrcode
from PIL import Image

from guestlist.core.config import settings

class QRService:
    """Service for generating invite QR codes"""

    @staticmethod
    def get_invite_url(invite_code: str) -> str:
        """Link a new member opens to join the organization"""
        return f"{settings.BASE_URL}/invite/{invite_code}"

    @staticmethod
    def generate_invite_qr(invite_code: str, format: str = 'PNG', size: int = 0) -> bytes:
        """Render the invite link as a QR code image; ``size`` > 0 resizes to a square"""
        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(QRService.get_invite_url(invite_code))
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white").convert("RGB")
        if size > 0:
            img = img.resize((size, size), Image.NEAREST)

        buffer = io.BytesIO()
        img.save(buffer, format=format)

        return buffer.getvalue()
