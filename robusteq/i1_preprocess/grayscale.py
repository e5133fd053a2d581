# Path: robusteq/i1_preprocess/grayscale.py
# Purpose: Single-channel floating-point working image.

import cv2
import numpy as np


def apply_grayscale(img):
    """Converts a BGR (or BGRA) image to grayscale; 2-D input is returned as is."""
    if img.ndim == 2:
        return img
    if img.ndim == 3 and img.shape[2] == 1:
        return img[:, :, 0]
    # cvtColor only handles 8U, 16U and 32F depths
    if img.dtype not in (np.uint8, np.uint16, np.float32):
        img = img.astype(np.float32)
    if img.ndim == 3 and img.shape[2] == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2GRAY)
    if img.ndim == 3 and img.shape[2] == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    raise ValueError(f"Unsupported image shape: {img.shape}")


def apply_to_float(img, dtype=np.float32):
    """Returns a new floating-point copy of the image."""
    return np.array(img, dtype=dtype, copy=True)
