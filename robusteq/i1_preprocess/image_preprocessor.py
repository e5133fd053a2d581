# Path: robusteq/i1_preprocess/image_preprocessor.py
import logging

import numpy as np

from robusteq.i0_core.types_definitions import EqualizationParams
from robusteq.i1_preprocess.grayscale import apply_grayscale, apply_to_float
from robusteq.i1_preprocess.mask_utils import binarize_mask, count_valid
from robusteq.i1_preprocess.masked_contrast_equalization import MaskedContrastEqualizer


class ImagePreprocessor:
    """
    Single entry point for illumination normalization of an image/mask pair.
    Each step is switched on/off by flags in the `preprocess` section of config.yaml.
    """

    def __init__(self, config):
        self.config = config or {}
        self.pre_cfg = self.config.get("preprocess", {}) or {}
        self.params = EqualizationParams(**(self.config.get("equalization", {}) or {}))

    # ------------------------------------------------------------
    def preprocess(self, image, mask=None):
        """Runs the enabled steps in RAM; the caller's arrays are not modified."""
        image = np.asarray(image)
        logging.info(f"Image received: shape={image.shape}, dtype={image.dtype}")

        # 1. Grayscale
        if self.pre_cfg.get("grayscale", False):
            image = apply_grayscale(image)
            logging.info("Converted to grayscale")

        # 2. Float32 working copy
        image = apply_to_float(image)

        # 3. Mask binarization
        if mask is not None and self.pre_cfg.get("binarize_mask", False):
            mask = binarize_mask(mask, self.pre_cfg.get("mask_threshold", 127))
            logging.info(f"Mask binarized: {count_valid(mask)} valid pixels")

        # 4. Masked robust contrast equalization
        if self.pre_cfg.get("masked_equalization", True):
            equalizer = MaskedContrastEqualizer(
                mask, alpha=self.params.alpha, tau=self.params.tau
            )
            equalizer.process_image(image)
            logging.info(
                f"Masked contrast equalization (alpha={self.params.alpha}, tau={self.params.tau})"
            )

        # 5. Rescale to [0, 1]
        if self.pre_cfg.get("normalise_output", False):
            image = self.normalise(image)
            logging.info("Output rescaled to [0, 1]")

        return {"final_image": image}

    # ------------------------------------------------------------
    @staticmethod
    def normalise(image):
        lo = float(image.min())
        hi = float(image.max())
        if hi == lo:
            return np.zeros_like(image)
        return ((image - lo) / (hi - lo)).astype(image.dtype)
