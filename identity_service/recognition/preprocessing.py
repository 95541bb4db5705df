"""
Frame preprocessing module.

Optional enhancement applied to kiosk frames before detection:
1. Denoising (fastNlMeansDenoisingColored)
2. CLAHE on luminance channel (helps with poor lighting)
3. Unsharp mask (sharpening)
"""

import cv2
import numpy as np

from ..config import Config
from ..logging_config import get_logger

logger = get_logger(__name__)


def enhance_luminance(frame_bgr: np.ndarray, clip_limit: float) -> np.ndarray:
    """
    Apply CLAHE to the luminance channel only, leaving colour untouched.

    Args:
        frame_bgr: Frame in BGR format
        clip_limit: CLAHE contrast limit

    Returns:
        Enhanced frame
    """
    ycrcb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2YCrCb)
    y, cr, cb = cv2.split(ycrcb)

    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(8, 8))
    y_enhanced = clahe.apply(y)

    return cv2.cvtColor(cv2.merge([y_enhanced, cr, cb]), cv2.COLOR_YCrCb2BGR)


def preprocess_frame(frame_bgr: np.ndarray, config: Config) -> np.ndarray:
    """
    Preprocess a frame before face detection.

    Geometry is preserved, so detections on the result are valid for the
    original frame.

    Args:
        frame_bgr: Frame in BGR format
        config: Service configuration

    Returns:
        Preprocessed frame, or the original frame if disabled or on error
    """
    if not config.enable_preprocessing:
        return frame_bgr

    try:
        denoised = cv2.fastNlMeansDenoisingColored(
            frame_bgr,
            None,
            h=config.denoise_strength,
            hColor=config.denoise_strength,
            templateWindowSize=7,
            searchWindowSize=21
        )

        enhanced = enhance_luminance(denoised, config.clahe_clip_limit)

        # Unsharp mask: original * 1.5 - blurred * 0.5
        gaussian = cv2.GaussianBlur(enhanced, (0, 0), 2.0)
        return cv2.addWeighted(enhanced, 1.5, gaussian, -0.5, 0)

    except cv2.error as e:
        logger.warning(f'Preprocessing failed, using raw frame: {e}')
        return frame_bgr
