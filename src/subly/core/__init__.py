"""Pure accounting core shared by the plaintext and confidential engines."""

from subly.core.due import DueScanner
from subly.core.tranches import ClaimRole

__all__ = ["DueScanner", "ClaimRole"]
