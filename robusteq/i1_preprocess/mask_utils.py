# Path: robusteq/i1_preprocess/mask_utils.py
# Purpose: Validity masks: "no mask" resolution, validation and binarization.

import cv2
import numpy as np


def resolve_mask(image, mask=None):
    """
    Return a boolean validity mask for `image`.

    A missing mask means "process everything" and resolves to an all-valid
    mask of the image shape. An explicit mask must match the image shape and
    hold only 0/1 (or False/True) cells.
    """
    if mask is None:
        return np.ones(image.shape[:2], dtype=bool)

    mask = np.asarray(mask)
    if mask.shape != image.shape:
        raise ValueError(
            f"Mask shape {mask.shape} does not match image shape {image.shape}"
        )
    if mask.dtype == bool:
        return mask.copy()

    valid = mask == 1
    if not np.all(valid | (mask == 0)):
        raise ValueError("Mask must be binary (only 0 and 1 values are allowed)")
    return valid


def binarize_mask(mask, threshold: float = 127):
    """Turns a soft or 8-bit region map into a {0, 1} mask."""
    mask = np.asarray(mask)
    if mask.dtype == bool:
        return mask.astype(np.uint8)
    if mask.dtype != np.uint8:
        mask = mask.astype(np.float32)
    _, binary = cv2.threshold(mask, threshold, 1, cv2.THRESH_BINARY)
    return binary.astype(np.uint8)


def count_valid(mask) -> int:
    return int(np.count_nonzero(mask))
