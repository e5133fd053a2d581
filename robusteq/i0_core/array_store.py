# Path: robusteq/i0_core/array_store.py
# Purpose: Read and write image/mask arrays as .npy files.
# Arrays reach this package already decoded; no picture formats are handled here.

import os
import logging

import numpy as np


def load_array(path: str):
    """
    Loads a 2-D (single-channel) or 3-D (multi-channel) array from a .npy file.

    Args:
        path (str): Path to the .npy file.

    Returns:
        numpy.ndarray: The stored array.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Array file not found: {path}")
    array = np.load(path, allow_pickle=False)
    if array.ndim not in (2, 3):
        raise ValueError(f"Expected a 2-D or 3-D array in {path}, got shape {array.shape}")
    logging.debug(f"Loaded {path} ({array.shape}, {array.dtype})")
    return array


def save_array(path: str, array):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    np.save(path, array, allow_pickle=False)
    logging.debug(f"Saved {path}")
    return path


def is_mask_file(path: str, mask_suffix: str = "_mask") -> bool:
    stem = os.path.splitext(os.path.basename(path))[0]
    return stem.endswith(mask_suffix)


def find_mask_for(image_path: str, mask_suffix: str = "_mask"):
    """Returns the sibling `<stem><mask_suffix>.npy` path if it exists, else None."""
    base, _ = os.path.splitext(image_path)
    mask_path = f"{base}{mask_suffix}.npy"
    return mask_path if os.path.isfile(mask_path) else None
