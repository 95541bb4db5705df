"""
Enrollment module.

Runs one capture attempt (detect -> quality gate -> embedding) under a
timeout, and collects the captures needed to register a person.
"""

import enum
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional, Set, Tuple

import numpy as np

from ..config import Config
from ..errors import DetectionTimeout, InitializationError, QualityError
from ..logging_config import get_logger
from .detection import Detection
from .quality import QualityGate, QualityVerdict
from .store import as_embedding

logger = get_logger(__name__)

MESSAGE_NO_FACE = 'no face detected'

DetectionSource = Callable[[], Optional[Detection]]


class EnrollmentState(enum.Enum):
    IDLE = 'idle'
    DETECTING = 'detecting'
    REJECTED = 'rejected'
    ACCEPTED = 'accepted'


class CaptureAttempt:
    """State of one capture attempt: Idle -> Detecting -> Rejected | Accepted -> Idle."""

    def __init__(self):
        self.state = EnrollmentState.IDLE
        self.transitions: List[EnrollmentState] = [EnrollmentState.IDLE]

    def move_to(self, state: EnrollmentState) -> None:
        self.state = state
        self.transitions.append(state)


def _run_detached(detection_source: DetectionSource) -> 'Future[Optional[Detection]]':
    """Run the detection source on its own daemon thread."""
    future: 'Future[Optional[Detection]]' = Future()

    def _worker() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(detection_source())
        except Exception as e:
            future.set_exception(e)

    thread = threading.Thread(target=_worker, daemon=True, name='enrollment-capture')
    thread.start()
    return future


class EnrollmentCoordinator:
    """
    Coordinates single capture attempts.

    Each detector call runs on its own daemon thread so the caller can give
    up after the timeout. A call that never returns is abandoned and does
    not hold up later attempts. There are no automatic retries.
    """

    def __init__(self, gate: QualityGate, config: Config):
        """
        Initialize coordinator.

        Args:
            gate: Quality gate applied to every detection
            config: Service configuration
        """
        self.gate = gate
        self.config = config
        self._active: Set[CaptureAttempt] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def state(self) -> EnrollmentState:
        """DETECTING while any attempt is in progress, IDLE otherwise."""
        with self._lock:
            return EnrollmentState.DETECTING if self._active else EnrollmentState.IDLE

    def capture_and_encode(
        self,
        detection_source: DetectionSource,
        timeout: Optional[float] = None
    ) -> np.ndarray:
        """
        Capture one face sample and return its embedding.

        Args:
            detection_source: Callable returning a Detection or None
            timeout: Seconds to wait for the detector (config default if None)

        Returns:
            Embedding of the accepted detection

        Raises:
            DetectionTimeout: If the detector does not answer in time
            QualityError: If no face is found or the gate rejects it
            InitializationError: If the detector's embeddings do not have
                the configured length
        """
        embedding, _ = self.capture(detection_source, timeout)
        return embedding

    def capture(
        self,
        detection_source: DetectionSource,
        timeout: Optional[float] = None,
        attempt: Optional[CaptureAttempt] = None
    ) -> Tuple[np.ndarray, QualityVerdict]:
        """Like capture_and_encode, also returning the accepting verdict."""
        if timeout is None:
            timeout = self.config.detection_timeout_seconds
        if attempt is None:
            attempt = CaptureAttempt()

        with self._lock:
            if self._closed:
                raise RuntimeError('Enrollment coordinator is shut down')
            self._active.add(attempt)

        attempt.move_to(EnrollmentState.DETECTING)
        try:
            future = _run_detached(detection_source)
            try:
                detection = future.result(timeout=timeout)
            except FutureTimeoutError:
                future.cancel()
                logger.warning(f'Detector did not answer within {timeout:.1f}s')
                raise DetectionTimeout(f'Face detection timed out after {timeout:.1f}s')

            if detection is None:
                attempt.move_to(EnrollmentState.REJECTED)
                raise QualityError(MESSAGE_NO_FACE)

            verdict = self.gate.evaluate(detection)

            if not verdict.accepted:
                attempt.move_to(EnrollmentState.REJECTED)
                logger.info(f'Capture rejected: {verdict.message}')
                raise QualityError(verdict.message, verdict)

            try:
                embedding = as_embedding(detection.embedding, self.config.embedding_size)
            except ValueError as e:
                attempt.move_to(EnrollmentState.REJECTED)
                logger.error(f'❌ Detector embedding does not match EMBEDDING_SIZE: {e}')
                raise InitializationError(
                    f'Detector produced an unusable embedding: {e}'
                ) from e

            attempt.move_to(EnrollmentState.ACCEPTED)
            logger.info(f'✅ Capture accepted (quality: {verdict.score:.2f})')
            return embedding, verdict
        finally:
            attempt.move_to(EnrollmentState.IDLE)
            with self._lock:
                self._active.discard(attempt)

    def shutdown(self) -> None:
        """Refuse new attempts; a detector call still running is abandoned."""
        with self._lock:
            self._closed = True


class RegistrationSession:
    """
    Collects the captures needed to register one person.

    A rejected or timed-out capture leaves the session unchanged so the
    caller can simply try again.
    """

    def __init__(
        self,
        identity_id: str,
        name: str,
        coordinator: EnrollmentCoordinator,
        required_captures: int
    ):
        if required_captures < 1:
            raise ValueError('required_captures must be at least 1')
        self.identity_id = str(identity_id)
        self.name = name
        self.coordinator = coordinator
        self.required_captures = required_captures
        self.embeddings: List[np.ndarray] = []
        self.quality_scores: List[float] = []

    @property
    def captured(self) -> int:
        return len(self.embeddings)

    @property
    def remaining(self) -> int:
        return max(0, self.required_captures - self.captured)

    @property
    def complete(self) -> bool:
        return self.captured >= self.required_captures

    @property
    def quality_score(self) -> float:
        """Mean quality score of the accepted captures."""
        if not self.quality_scores:
            return 0.0
        return float(np.mean(self.quality_scores))

    def capture(
        self,
        detection_source: DetectionSource,
        timeout: Optional[float] = None
    ) -> int:
        """
        Run one capture attempt.

        Returns:
            Number of captures still needed

        Raises:
            DetectionTimeout, QualityError: Propagated from the coordinator
        """
        if self.complete:
            return 0

        embedding, verdict = self.coordinator.capture(detection_source, timeout)
        self.embeddings.append(embedding)
        self.quality_scores.append(verdict.score)

        logger.info(
            f'Capture {self.captured} of {self.required_captures} '
            f'completed for {self.name} (ID: {self.identity_id})'
        )
        return self.remaining
