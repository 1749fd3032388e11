from .base import QrDecoder
from .preprocess import prepare
from .render import qr_image
from .zxing_decoder import ZxingQrDecoder, read_qr_from_variants

__all__ = ["QrDecoder", "ZxingQrDecoder", "prepare", "qr_image", "read_qr_from_variants"]
