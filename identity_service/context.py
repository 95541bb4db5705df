"""
Recognition context.

One RecognitionContext is constructed at startup and passed to every call
site. It owns the detector, the embedding store and the algorithms that
read it, and refuses identification until init() has succeeded.
"""

import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .config import Config
from .employees import BackendIdentitySource
from .errors import InitializationError, LoadError
from .face_app import FaceDetector
from .logging_config import get_logger
from .recognition.detection import Detection
from .recognition.enrollment import EnrollmentCoordinator, RegistrationSession
from .recognition.matching import MatchingEngine, MatchResult, NO_MATCH
from .recognition.quality import QualityGate, QualityVerdict
from .recognition.store import EmbeddingStore, Identity
from .utils.cache import load_cache, save_cache

logger = get_logger(__name__)


@dataclass(frozen=True)
class RecognitionOutcome:
    """Result of running the attendance flow on one frame."""

    detection: Optional[Detection]
    verdict: Optional[QualityVerdict]
    match: MatchResult

    @property
    def detected(self) -> bool:
        return self.detection is not None


class RecognitionContext:
    """Service context with explicit init/teardown."""

    def __init__(
        self,
        config: Config,
        detector: Optional[FaceDetector] = None,
        identity_source: Optional[BackendIdentitySource] = None
    ):
        """
        Build the context. Nothing is loaded until init().

        Args:
            config: Service configuration
            detector: Detector capability (InsightFace by default)
            identity_source: Persistence collaborator (backend API by default)
        """
        self.config = config
        self.detector = detector or FaceDetector(config)
        self.identity_source = identity_source or BackendIdentitySource(config)

        self.store = EmbeddingStore(config.embedding_size)
        self.gate = QualityGate(config)
        self.engine = MatchingEngine(self.store, config)
        self.enrollment = EnrollmentCoordinator(self.gate, config)

        self.started_at: Optional[float] = None
        self.last_load_error: Optional[str] = None
        self.last_loaded_at: Optional[float] = None
        self._initialized = False
        self._refresh_lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self) -> None:
        """
        Initialize the detector and load identities.

        A backend failure is not fatal: the cached snapshot is used and the
        error is kept in last_load_error for the operator.

        Raises:
            InitializationError: If the detector cannot be initialized
        """
        if self._initialized:
            return

        try:
            self.detector.initialize()
        except InitializationError as e:
            logger.error(f'Detector initialization failed: {e}')
            raise

        try:
            self.refresh_identities()
        except LoadError:
            cached = load_cache(self.config.cache_file, self.config.embedding_size)
            if cached is not None:
                self.store.load(cached)
                logger.warning(f'Using cached snapshot with {len(cached)} identities')
            else:
                logger.error('No cached snapshot available, starting with an empty store')

        self._initialized = True
        self.started_at = time.time()
        logger.info('✅ Recognition context initialized')

    def teardown(self) -> None:
        """Release the detector and worker threads."""
        self._initialized = False
        self.enrollment.shutdown()
        self.detector.close()
        logger.info('Recognition context stopped')

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise InitializationError('Recognition context is not initialized')

    def refresh_identities(self) -> int:
        """
        Reload identities from the backend.

        Returns:
            Number of identities loaded

        Raises:
            LoadError: If loading fails; the previous snapshot stays active
        """
        with self._refresh_lock:
            try:
                self.store.refresh(self.identity_source)
            except LoadError as e:
                self.last_load_error = str(e)
                logger.error(f'Identity refresh failed: {e}')
                raise

            self.last_load_error = None
            self.last_loaded_at = time.time()
            save_cache(self.store.snapshot().identities, self.config.cache_file)
            return len(self.store)

    def identify(self, embedding: Sequence[float]) -> MatchResult:
        """Identify an embedding against the current snapshot."""
        self._require_initialized()
        return self.engine.identify(embedding)

    def evaluate(self, detection: Detection) -> QualityVerdict:
        """Run the quality gate on a detection."""
        self._require_initialized()
        return self.gate.evaluate(detection)

    def meets_attendance_policy(self, result: MatchResult) -> bool:
        """Whether a match is confident enough to record attendance."""
        return result.matched and result.confidence >= self.config.min_confidence_score

    def recognize_frame(self, frame: np.ndarray) -> RecognitionOutcome:
        """
        Attendance flow: detect, check quality, identify.

        Returns:
            RecognitionOutcome; match is NO_MATCH when nothing was detected
            or the quality gate rejected the face
        """
        self._require_initialized()

        detection = self.detector.detect(frame)
        if detection is None:
            return RecognitionOutcome(detection=None, verdict=None, match=NO_MATCH)

        verdict = self.gate.evaluate(detection)
        if not verdict.accepted:
            return RecognitionOutcome(detection=detection, verdict=verdict, match=NO_MATCH)

        match = self.engine.identify(detection.embedding)
        return RecognitionOutcome(detection=detection, verdict=verdict, match=match)

    def capture_and_encode(self, frame: np.ndarray, timeout: Optional[float] = None) -> np.ndarray:
        """
        Enrollment capture on a single frame.

        Raises:
            InitializationError, DetectionTimeout, QualityError
        """
        self._require_initialized()
        return self.enrollment.capture_and_encode(lambda: self.detector.detect(frame), timeout)

    def start_registration(self, identity_id: str, name: str) -> RegistrationSession:
        """Begin collecting captures for one person."""
        self._require_initialized()
        return RegistrationSession(
            identity_id,
            name,
            self.enrollment,
            self.config.registration_captures
        )

    def complete_registration(self, session: RegistrationSession) -> Identity:
        """
        Persist a finished registration and make it matchable.

        Returns:
            The identity as now held in the store

        Raises:
            ValueError: If the session is not complete or an embedding
                has the wrong length
            PersistenceError: If the backend does not store the encodings
        """
        self._require_initialized()
        if not session.complete:
            raise ValueError(
                f'Registration needs {session.remaining} more captures'
            )

        identity = Identity.create(
            session.identity_id,
            session.name,
            session.embeddings,
            self.config.embedding_size
        )

        # A refresh must not swap in a snapshot fetched before this save
        with self._refresh_lock:
            self.identity_source.save_encodings(session.identity_id, identity.embeddings)

            if self.store.get(session.identity_id) is not None:
                for embedding in identity.embeddings:
                    self.store.append(session.identity_id, embedding)
            else:
                self.store.add(identity)

        self.identity_source.log_registration(
            session.identity_id,
            success=True,
            quality_score=session.quality_score,
        )

        logger.info(f'✅ {session.name} (ID: {session.identity_id}) registered')
        return self.store.get(session.identity_id)
