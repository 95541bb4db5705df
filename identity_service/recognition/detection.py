"""
Detection value type.

A Detection is what the detector capability produces for one capture
attempt: face box, 68-point landmarks, detector score and embedding.
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple

import numpy as np

LANDMARK_COUNT = 68

# First point of each eye in the 68-point scheme
LEFT_EYE_START = 36
RIGHT_EYE_START = 42


@dataclass(frozen=True, eq=False)
class Detection:
    """
    Single detected face.

    Attributes:
        box: (x, y, width, height) in pixels
        landmarks: Array of shape (68, 2) with (x, y) points
        confidence: Detector score in [0, 1]
        embedding: Face embedding vector
        frame_size: (width, height) of the source frame, if known
    """

    box: Tuple[float, float, float, float]
    landmarks: np.ndarray
    confidence: float
    embedding: np.ndarray
    frame_size: Optional[Tuple[int, int]] = None

    def __post_init__(self):
        landmarks = np.asarray(self.landmarks, dtype=np.float64)
        if landmarks.shape != (LANDMARK_COUNT, 2):
            raise ValueError(
                f'Expected landmarks of shape ({LANDMARK_COUNT}, 2), got {landmarks.shape}'
            )
        if not 0.0 <= float(self.confidence) <= 1.0:
            raise ValueError(f'Detector confidence out of range: {self.confidence}')

        object.__setattr__(self, 'box', tuple(float(v) for v in self.box))
        object.__setattr__(self, 'landmarks', landmarks)
        object.__setattr__(self, 'confidence', float(self.confidence))
        object.__setattr__(
            self, 'embedding', np.asarray(self.embedding, dtype=np.float64).ravel()
        )

    @property
    def width(self) -> float:
        return self.box[2]

    @property
    def height(self) -> float:
        return self.box[3]

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def eye_distance(self) -> float:
        """Horizontal distance between the first points of both eyes."""
        return abs(
            self.landmarks[LEFT_EYE_START, 0] - self.landmarks[RIGHT_EYE_START, 0]
        )


def detection_from_face(face: Any, frame_shape: Tuple[int, ...]) -> Detection:
    """
    Convert an InsightFace face object into a Detection.

    Args:
        face: Face returned by FaceAnalysis.get (bbox, det_score,
            landmark_3d_68, normed_embedding)
        frame_shape: Shape of the source frame (height, width[, channels])

    Returns:
        Detection
    """
    x1, y1, x2, y2 = (float(v) for v in face.bbox)
    landmarks = np.asarray(face.landmark_3d_68, dtype=np.float64)[:, :2]
    frame_height, frame_width = int(frame_shape[0]), int(frame_shape[1])

    return Detection(
        box=(x1, y1, x2 - x1, y2 - y1),
        landmarks=landmarks,
        confidence=min(1.0, max(0.0, float(face.det_score))),
        embedding=face.normed_embedding,
        frame_size=(frame_width, frame_height),
    )
