"""
Configuration module for Identity Service.

Loads configuration from environment variables with sensible defaults.
All settings are immutable after initialization.
"""

import os
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for Identity Service.

    Backend Integration:
        backend_url: Base URL of the backend API (e.g., http://backend:3000)
        backend_timeout_seconds: Timeout for a single backend request
        backend_retries: Attempts before a backend fetch is reported as failed

    Service Identity:
        service_name: Name of this service instance
        device_id: Logical identifier of the kiosk/device (for logging/monitoring)
        api_port: Port for Flask HTTP server

    Matching:
        embedding_size: Length of every face embedding (512 for ArcFace)
        match_threshold: Confidence a match must exceed to be accepted
        min_confidence_score: Attendance policy minimum, independent of match_threshold

    Quality Gate:
        min_face_ratio: Smallest allowed face-area / frame-area ratio
        max_face_ratio: Largest allowed face-area / frame-area ratio
        min_eye_ratio: Inter-eye distance / face width must exceed this
        min_detector_confidence: Detector score must exceed this
        frame_width, frame_height: Frame size used when a detection carries none

    Preprocessing:
        enable_preprocessing: Enable image enhancement pipeline
        clahe_clip_limit: CLAHE contrast limiting (higher = more contrast)
        denoise_strength: Denoising strength (0-10, higher = more smoothing)

    Detector:
        model_name: InsightFace model pack name
        model_root: Primary directory holding the model pack
        fallback_model_roots: Alternate model directories, tried in order
        init_fallback_attempts: How many alternates may be tried after the primary
        insightface_det_size: Detection size for InsightFace (width, height)
        detection_timeout_seconds: Upper bound for one capture attempt

    Enrollment:
        registration_captures: Accepted captures needed to register a person

    System:
        reload_identities_interval: Seconds between identity snapshot reloads
        cache_file: Path to identity snapshot cache file
        debug_mode: Enable debug logging
    """

    # Backend
    backend_url: str
    backend_timeout_seconds: float
    backend_retries: int

    # Service
    service_name: str
    device_id: str
    api_port: int

    # Matching
    embedding_size: int
    match_threshold: float
    min_confidence_score: float

    # Quality
    min_face_ratio: float
    max_face_ratio: float
    min_eye_ratio: float
    min_detector_confidence: float
    frame_width: int
    frame_height: int

    # Preprocessing
    enable_preprocessing: bool
    clahe_clip_limit: float
    denoise_strength: int

    # InsightFace
    model_name: str
    model_root: str
    fallback_model_roots: Tuple[str, ...]
    init_fallback_attempts: int
    insightface_det_size: Tuple[int, int]
    detection_timeout_seconds: float

    # Enrollment
    registration_captures: int

    # System
    reload_identities_interval: int
    cache_file: str
    debug_mode: bool


def _parse_paths(raw: str) -> Tuple[str, ...]:
    """Split a comma-separated path list, dropping empty entries."""
    return tuple(part.strip() for part in raw.split(',') if part.strip())


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config: Immutable configuration object
    """
    return Config(
        # Backend
        backend_url=os.getenv('BACKEND_URL', 'http://localhost:3000'),
        backend_timeout_seconds=float(os.getenv('BACKEND_TIMEOUT', '10')),
        backend_retries=int(os.getenv('BACKEND_RETRIES', '3')),

        # Service
        service_name=os.getenv('SERVICE_NAME', 'identity'),
        device_id=os.getenv('DEVICE_ID', 'kiosk'),
        api_port=int(os.getenv('API_PORT', '5001')),

        # Matching
        embedding_size=int(os.getenv('EMBEDDING_SIZE', '512')),
        match_threshold=float(os.getenv('MATCH_THRESHOLD', '0.75')),
        min_confidence_score=float(os.getenv('MIN_CONFIDENCE_SCORE', '0.8')),

        # Quality
        min_face_ratio=float(os.getenv('MIN_FACE_RATIO', '0.02')),
        max_face_ratio=float(os.getenv('MAX_FACE_RATIO', '0.6')),
        min_eye_ratio=float(os.getenv('MIN_EYE_RATIO', '0.15')),
        min_detector_confidence=float(os.getenv('MIN_DETECTOR_CONFIDENCE', '0.4')),
        frame_width=int(os.getenv('FRAME_WIDTH', '1280')),
        frame_height=int(os.getenv('FRAME_HEIGHT', '720')),

        # Preprocessing
        enable_preprocessing=os.getenv('ENABLE_PREPROCESSING', 'false').lower() == 'true',
        clahe_clip_limit=float(os.getenv('CLAHE_CLIP', '2.0')),
        denoise_strength=int(os.getenv('DENOISE_STRENGTH', '5')),

        # InsightFace
        model_name=os.getenv('MODEL_NAME', 'buffalo_l'),
        model_root=os.getenv('MODEL_ROOT', '~/.insightface'),
        fallback_model_roots=_parse_paths(os.getenv('FALLBACK_MODEL_ROOTS', './models')),
        init_fallback_attempts=int(os.getenv('INIT_FALLBACK_ATTEMPTS', '1')),
        insightface_det_size=(640, 640),
        detection_timeout_seconds=float(os.getenv('DETECTION_TIMEOUT', '5.0')),

        # Enrollment
        registration_captures=int(os.getenv('REGISTRATION_CAPTURES', '3')),

        # System
        reload_identities_interval=int(os.getenv('RELOAD_INTERVAL', '300')),
        cache_file=os.getenv('CACHE_FILE', 'identity_snapshot_cache.pkl'),
        debug_mode=os.getenv('DEBUG', 'false').lower() == 'true',
    )
