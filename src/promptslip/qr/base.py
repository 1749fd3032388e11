from __future__ import annotations

from typing import Optional, Protocol

import numpy as np


class QrDecoder(Protocol):
    """Common interface of QR symbol decoders."""

    def is_available(self) -> bool:
        ...

    def decode(self, pixels: np.ndarray, width: int, height: int) -> Optional[str]:
        """Returns the text of the first QR symbol found in an 8-bit greyscale buffer."""
        ...
