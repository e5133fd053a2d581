# Path: robusteq/i1_preprocess/masked_contrast_equalization.py
# Purpose: Robust contrast equalization restricted to the valid pixels of a mask.

import logging

import numpy as np

from robusteq.i0_core.types_definitions import (
    DegenerateMaskError,
    DegenerateScaleError,
    EqualizationParams,
)
from robusteq.i1_preprocess.mask_utils import count_valid, resolve_mask


def _power_mean(values: np.ndarray, alpha: float) -> float:
    # factor out the largest magnitude so values ** alpha cannot under- or overflow
    peak = float(np.max(values))
    if peak == 0 or not np.isfinite(peak):
        return peak
    with np.errstate(under="ignore"):
        return peak * float(np.mean((values / peak) ** alpha) ** (1.0 / alpha))


def _check_divisor(divisor: float, name: str) -> float:
    if divisor == 0 or not np.isfinite(divisor):
        raise DegenerateScaleError(f"degenerate scale estimate: {name} = {divisor}")
    return divisor


def first_pass_divisor(values: np.ndarray, alpha: float) -> float:
    """Power mean of |values| with exponent alpha."""
    return _check_divisor(_power_mean(np.abs(values), alpha), "d1")


def second_pass_divisor(values: np.ndarray, alpha: float, tau: float) -> float:
    """Power mean of |values| clamped at tau, with exponent alpha."""
    return _check_divisor(_power_mean(np.minimum(tau, np.abs(values)), alpha), "d2")


def _check_image(img):
    if not isinstance(img, np.ndarray):
        raise TypeError(f"Expected numpy.ndarray, got {type(img).__name__}")
    if img.ndim != 2:
        raise ValueError(f"Expected a single-channel 2-D image, got shape {img.shape}")
    if img.size == 0:
        raise ValueError("Image is empty")
    if not np.issubdtype(img.dtype, np.floating):
        raise TypeError(f"Image must have a floating dtype, got {img.dtype}")
    if not img.flags.writeable:
        raise ValueError("Image buffer is read-only")


def apply_masked_contrast_equalization(img, mask=None, alpha: float = 0.1, tau: float = 10.0):
    """
    Equalizes contrast of `img` in place and returns the same array.

    Pass 1 divides by the power mean of |I|^alpha over the valid pixels,
    pass 2 divides by the power mean of min(tau, |I|)^alpha, pass 3 maps
    valid pixels through tau * tanh(I / tau) and sets invalid pixels to 0.

    Both divisors are computed on a float64 working copy of the valid pixels,
    so the caller's buffer is untouched when any error is raised.
    """
    params = EqualizationParams(alpha=alpha, tau=tau)
    _check_image(img)
    valid = resolve_mask(img, mask)
    if count_valid(valid) == 0:
        raise DegenerateMaskError("degenerate mask: no valid pixels")

    values = img[valid].astype(np.float64)

    d1 = first_pass_divisor(values, params.alpha)
    values /= d1
    d2 = second_pass_divisor(values, params.alpha, params.tau)
    values /= d2
    logging.debug(f"Contrast equalization divisors: d1={d1:.6g}, d2={d2:.6g}")

    out = (params.tau * np.tanh(values / params.tau)).astype(img.dtype)
    # tanh rounds to 1.0 for large inputs; keep valid pixels inside (-tau, tau)
    limit = np.nextafter(img.dtype.type(params.tau), img.dtype.type(0))
    np.clip(out, -limit, limit, out=out)

    img[valid] = out
    img[~valid] = 0
    return img


class MaskedContrastEqualizer:
    """
    Masked robust contrast equalizer, configured once and applied per image.
    Without a mask every pixel of the processed image is valid.
    """

    def __init__(self, mask=None, alpha: float = 0.1, tau: float = 10.0):
        self.params = EqualizationParams(alpha=alpha, tau=tau)
        self.mask = None
        if mask is not None:
            self.mask = np.array(mask, copy=True)
            self.mask.setflags(write=False)

    def process_image(self, image):
        return apply_masked_contrast_equalization(
            image, self.mask, alpha=self.params.alpha, tau=self.params.tau
        )

    __call__ = process_image
