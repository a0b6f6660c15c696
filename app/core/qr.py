"""QR code rendering for short URLs (PNG via Pillow, SVG via path image)."""

import io

import qrcode
from qrcode.image.svg import SvgPathImage

QR_SIZE_DEFAULT = 512
QR_SIZE_MAX = 2048
QR_BORDER = 2


def clamp_size(size) -> int:
    try:
        size = int(size)
    except (TypeError, ValueError):
        return QR_SIZE_DEFAULT
    if size <= 0:
        return QR_SIZE_DEFAULT
    return min(size, QR_SIZE_MAX)


def _build(data: str, size: int) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=1,
        border=QR_BORDER,
    )
    qr.add_data(data)
    qr.make(fit=True)
    # Scale boxes so the full image (modules + quiet zone) lands near `size` px
    qr.box_size = max(1, size // (qr.modules_count + 2 * QR_BORDER))
    return qr


def render_png(data: str, size: int = QR_SIZE_DEFAULT) -> bytes:
    img = _build(data, size).make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def render_svg(data: str, size: int = QR_SIZE_DEFAULT) -> bytes:
    img = _build(data, size).make_image(image_factory=SvgPathImage)
    buffer = io.BytesIO()
    img.save(buffer)
    return buffer.getvalue()
