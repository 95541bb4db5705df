"""
InsightFace detector module.

Provides face detection, landmarks and embeddings using InsightFace models.
Model loading tries the primary model root first and then a bounded number
of fallback roots.
"""

import os
import threading
from typing import Any, Callable, List, Optional

import numpy as np

from .config import Config
from .errors import InitializationError
from .logging_config import get_logger
from .recognition.detection import Detection, detection_from_face
from .recognition.preprocessing import preprocess_frame

logger = get_logger(__name__)

ALLOWED_MODULES = ['detection', 'landmark_3d_68', 'recognition']

FaceAppFactory = Callable[..., Any]


def _default_factory(**kwargs: Any) -> Any:
    # Imported here so the core does not require the model stack
    from insightface.app import FaceAnalysis
    return FaceAnalysis(**kwargs)


def candidate_model_roots(config: Config) -> List[str]:
    """
    Model roots to try, in order.

    Returns:
        Primary root followed by at most init_fallback_attempts alternates
    """
    attempts = max(0, config.init_fallback_attempts)
    roots = [config.model_root] + list(config.fallback_model_roots[:attempts])
    return [os.path.expanduser(root) for root in roots]


def initialize_face_app(config: Config, factory: FaceAppFactory = _default_factory) -> Any:
    """
    Initialize InsightFace FaceAnalysis.

    Args:
        config: Service configuration
        factory: Callable building a FaceAnalysis-like object

    Returns:
        Initialized FaceAnalysis instance

    Raises:
        InitializationError: If every model root fails
    """
    last_error: Optional[Exception] = None

    for root in candidate_model_roots(config):
        logger.info(f'Initializing InsightFace ({config.model_name}) from {root}...')
        try:
            face_app = factory(
                name=config.model_name,
                root=root,
                providers=['CPUExecutionProvider'],
                allowed_modules=ALLOWED_MODULES,
            )
            face_app.prepare(ctx_id=0, det_size=config.insightface_det_size)
        except Exception as e:
            logger.warning(f'Failed to load models from {root}: {e}')
            last_error = e
            continue

        logger.info(f'✅ InsightFace initialized (det_size={config.insightface_det_size})')
        return face_app

    raise InitializationError(
        f'Face detector could not be initialized from any model root: {last_error}'
    ) from last_error


class FaceDetector:
    """
    Detector capability backed by InsightFace.

    initialize() is idempotent and may be retried after a failure.
    """

    def __init__(self, config: Config, factory: FaceAppFactory = _default_factory):
        self.config = config
        self._factory = factory
        self._face_app: Any = None
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._face_app is not None

    def initialize(self) -> None:
        """
        Load models once.

        Raises:
            InitializationError: If loading fails
        """
        with self._lock:
            if self._face_app is not None:
                return
            self._face_app = initialize_face_app(self.config, self._factory)

    def close(self) -> None:
        with self._lock:
            self._face_app = None

    def detect(self, frame: np.ndarray) -> Optional[Detection]:
        """
        Detect at most one face in a frame.

        Args:
            frame: Frame in BGR format

        Returns:
            Detection for the first face found, or None

        Raises:
            InitializationError: If called before initialize()
        """
        face_app = self._face_app
        if face_app is None:
            raise InitializationError('Face detector is not initialized')

        prepared = preprocess_frame(frame, self.config)
        faces = face_app.get(prepared)

        if not faces:
            return None

        if len(faces) > 1:
            logger.debug(f'{len(faces)} faces in frame, using the first')

        return detection_from_face(faces[0], frame.shape)
