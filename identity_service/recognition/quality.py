"""
Face quality gate.

Decides whether a detected face may be used for matching or enrollment.
Rules are checked in order and the first failing rule decides:
1. Size - face area relative to frame area
2. Pose - inter-eye distance relative to face width
3. Lighting - detector confidence
"""

from dataclasses import dataclass

from ..config import Config
from ..logging_config import get_logger
from .detection import Detection

logger = get_logger(__name__)

MESSAGE_TOO_SMALL = 'move closer to the camera'
MESSAGE_TOO_LARGE = 'move back from the camera'
MESSAGE_NOT_FRONTAL = 'face the camera directly'
MESSAGE_LOW_CONFIDENCE = 'ensure good lighting'
MESSAGE_READY = 'ready to capture'

SCORE_SIZE_REJECTED = 0.3
SCORE_POSE_REJECTED = 0.4
SCORE_LIGHTING_REJECTED = 0.5
SCORE_ACCEPTED = 0.9


@dataclass(frozen=True)
class QualityVerdict:
    """Outcome of a quality check."""

    score: float
    message: str
    accepted: bool


class QualityGate:
    """
    Quality gate for single face samples.

    Size is checked before pose because landmark geometry is unreliable
    on abnormally small or large face boxes.
    """

    def __init__(self, config: Config):
        """
        Initialize quality gate.

        Args:
            config: Service configuration
        """
        self.config = config

    def face_ratio(self, detection: Detection) -> float:
        """Face area divided by frame area."""
        if detection.frame_size is not None:
            frame_width, frame_height = detection.frame_size
        else:
            frame_width, frame_height = self.config.frame_width, self.config.frame_height

        frame_area = float(frame_width) * float(frame_height)
        if frame_area <= 0:
            return 0.0
        return detection.area / frame_area

    def eye_ratio(self, detection: Detection) -> float:
        """Inter-eye distance divided by face width."""
        if detection.width <= 0:
            return 0.0
        return detection.eye_distance / detection.width

    def evaluate(self, detection: Detection) -> QualityVerdict:
        """
        Evaluate a detection.

        Args:
            detection: Detected face

        Returns:
            QualityVerdict with corrective message when rejected
        """
        ratio = self.face_ratio(detection)
        if ratio < self.config.min_face_ratio:
            return self._reject(SCORE_SIZE_REJECTED, MESSAGE_TOO_SMALL, f'face_ratio={ratio:.3f}')
        if ratio > self.config.max_face_ratio:
            return self._reject(SCORE_SIZE_REJECTED, MESSAGE_TOO_LARGE, f'face_ratio={ratio:.3f}')

        eye_ratio = self.eye_ratio(detection)
        if not eye_ratio > self.config.min_eye_ratio:
            return self._reject(SCORE_POSE_REJECTED, MESSAGE_NOT_FRONTAL, f'eye_ratio={eye_ratio:.3f}')

        if not detection.confidence > self.config.min_detector_confidence:
            return self._reject(
                SCORE_LIGHTING_REJECTED,
                MESSAGE_LOW_CONFIDENCE,
                f'confidence={detection.confidence:.3f}'
            )

        return QualityVerdict(score=SCORE_ACCEPTED, message=MESSAGE_READY, accepted=True)

    def _reject(self, score: float, message: str, reason: str) -> QualityVerdict:
        logger.debug(f'Quality rejected ({reason}): {message}')
        return QualityVerdict(score=score, message=message, accepted=False)
