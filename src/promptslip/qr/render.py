from __future__ import annotations

import numpy as np
from PIL import Image

from promptslip.qr.zxing_decoder import zxingcpp

DEFAULT_MODULE_SCALE = 8


def qr_image(text: str, *, scale: int = DEFAULT_MODULE_SCALE) -> Image.Image:
    """Renders ``text`` as a black-on-white QR code, quiet zone included."""
    if zxingcpp is None:
        raise RuntimeError("zxing-cpp is not installed, cannot render QR codes")
    barcode = zxingcpp.create_barcode(text, zxingcpp.BarcodeFormat.QRCode)
    pixels = np.asarray(barcode.to_image(scale=int(scale)), dtype=np.uint8)
    return Image.fromarray(pixels).convert("L")
