"""
Unsharp mask sharpening.
"""

from typing import Literal, Optional
import logging

import numpy as np
import cv2

from .coadd import to_output_format
from .config import SharpenConfig


logger = logging.getLogger(__name__)


def normalize_kernel_size(kernel_size: int) -> int:
    """
    Return a valid Gaussian kernel size.

    Even sizes are bumped to the next odd value and the result is at
    least 3, since a 1x1 Gaussian does not blur at all.
    """
    kernel_size = int(kernel_size)
    if kernel_size < 1:
        raise ValueError(f"kernel_size must be at least 1, got {kernel_size}")
    if kernel_size % 2 == 0:
        kernel_size += 1
    return max(kernel_size, 3)


def coupled_amount(sigma: float) -> float:
    """Default sharpening strength, tied to the blur sigma."""
    return 2.0 * sigma / 100.0


def unsharp_mask(
    image: np.ndarray,
    kernel_size: int = 5,
    sigma: float = 3.0,
    amount: Optional[float] = None,
    threshold: float = 0.0,
    bit_depth: Literal[8, 16] = 8,
) -> np.ndarray:
    """
    Sharpen an image by amplifying its difference from a blurred copy.

    sharpened = original + amount * (original - blurred)

    Args:
        image: Source image, any numeric dtype
        kernel_size: Gaussian kernel size, normalized to an odd value >= 3
        sigma: Gaussian standard deviation
        amount: Sharpening strength, defaults to 2 * sigma / 100
        threshold: Pixels whose |original - blurred| is below this keep
            their original value
        bit_depth: Output bits per channel (8 or 16)

    Returns:
        Sharpened image of the same geometry as ``image``
    """
    if image is None or image.size == 0:
        raise ValueError("No image to sharpen")
    if sigma < 0:
        raise ValueError(f"sigma must be non-negative, got {sigma}")
    if threshold < 0:
        raise ValueError(f"threshold must be non-negative, got {threshold}")

    ksize = normalize_kernel_size(kernel_size)
    if amount is None:
        amount = coupled_amount(sigma)

    original = image.astype(np.float64)
    blurred = cv2.GaussianBlur(original, (ksize, ksize), sigma)

    detail = original - blurred
    sharpened = original + amount * detail

    if threshold > 0:
        low_contrast = np.abs(detail) < threshold
        sharpened[low_contrast] = original[low_contrast]

    # Only the lower bound is clamped here; narrowing saturates the top
    np.maximum(sharpened, 0.0, out=sharpened)

    return to_output_format(sharpened, bit_depth)


class Sharpener:
    """
    Unsharp mask stage configured from a SharpenConfig.
    """

    def __init__(self, config: Optional[SharpenConfig] = None, bit_depth: Literal[8, 16] = 8):
        self.config = config or SharpenConfig()
        self.bit_depth = bit_depth

    @property
    def amount(self) -> float:
        if self.config.amount is not None:
            return self.config.amount
        return coupled_amount(self.config.sigma)

    def sharpen(self, image: np.ndarray) -> np.ndarray:
        logger.info(
            f"Sharpening: kernel={normalize_kernel_size(self.config.kernel_size)}, "
            f"sigma={self.config.sigma}, amount={self.amount:.3f}"
        )
        return unsharp_mask(
            image,
            kernel_size=self.config.kernel_size,
            sigma=self.config.sigma,
            amount=self.config.amount,
            threshold=self.config.threshold,
            bit_depth=self.bit_depth,
        )
