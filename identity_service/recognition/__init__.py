"""
Recognition algorithms package.

Contains modules for:
- Detection value type
- Reference embedding store
- Face quality gate
- Embedding matching
- Enrollment capture
- Frame preprocessing
"""

from .detection import Detection, detection_from_face
from .store import EmbeddingStore, Identity, StoreSnapshot, as_embedding
from .quality import QualityGate, QualityVerdict
from .matching import MatchResult, MatchingEngine, NO_MATCH, best_match, confidence_from_distance
from .enrollment import CaptureAttempt, EnrollmentCoordinator, EnrollmentState, RegistrationSession
from .preprocessing import preprocess_frame

__all__ = [
    'Detection',
    'detection_from_face',
    'EmbeddingStore',
    'Identity',
    'StoreSnapshot',
    'as_embedding',
    'QualityGate',
    'QualityVerdict',
    'MatchResult',
    'MatchingEngine',
    'NO_MATCH',
    'best_match',
    'confidence_from_distance',
    'CaptureAttempt',
    'EnrollmentCoordinator',
    'EnrollmentState',
    'RegistrationSession',
    'preprocess_frame',
]
