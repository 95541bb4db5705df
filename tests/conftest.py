"""Shared test fixtures for identity_service tests."""

import dataclasses

import numpy as np
import pytest

from identity_service.config import load_config
from identity_service.context import RecognitionContext
from identity_service.errors import InitializationError, LoadError
from identity_service.recognition.detection import Detection
from identity_service.recognition.store import Identity

EMBEDDING_SIZE = 4


def vec(*values):
    """Embedding of EMBEDDING_SIZE, padded with zeros."""
    padded = list(values) + [0.0] * (EMBEDDING_SIZE - len(values))
    return np.array(padded, dtype=np.float64)


def make_identity(identity_id, *embeddings, name=None):
    return Identity.create(
        identity_id, name or f'Employee {identity_id}', embeddings, EMBEDDING_SIZE
    )


def make_detection(
    width=300.0,
    height=300.0,
    eye_distance=120.0,
    confidence=0.9,
    embedding=None,
    frame_size=(1000, 1000),
):
    """Detection at (100, 100) with the eyes eye_distance apart."""
    landmarks = np.zeros((68, 2))
    landmarks[36] = (100.0, 150.0)
    landmarks[42] = (100.0 + eye_distance, 150.0)
    return Detection(
        box=(100.0, 100.0, width, height),
        landmarks=landmarks,
        confidence=confidence,
        embedding=vec() if embedding is None else embedding,
        frame_size=frame_size,
    )


class FakeDetector:
    """Detector capability returning a fixed detection."""

    def __init__(self, detection=None, fail_init=False):
        self.detection = detection
        self.fail_init = fail_init
        self.initialized = False
        self.init_calls = 0
        self.frames = []

    def initialize(self):
        self.init_calls += 1
        if self.fail_init:
            raise InitializationError('models missing')
        self.initialized = True

    def close(self):
        self.initialized = False

    def detect(self, frame):
        if not self.initialized:
            raise InitializationError('Face detector is not initialized')
        self.frames.append(frame)
        return self.detection


class FakeIdentitySource:
    """In-memory persistence collaborator."""

    def __init__(self, identities=(), fail=False):
        self.identities = list(identities)
        self.fail = fail
        self.saved = {}
        self.logs = []

    def fetch_identities(self):
        if self.fail:
            raise LoadError('Backend unavailable')
        return list(self.identities)

    def save_encodings(self, identity_id, encodings):
        self.saved[identity_id] = [np.asarray(e) for e in encodings]

    def log_registration(self, identity_id, success, quality_score, attempt_number=1):
        self.logs.append((identity_id, success, quality_score))
        return True


@pytest.fixture
def config(tmp_path, monkeypatch):
    """Default configuration with a small embedding size."""
    for key in (
        'EMBEDDING_SIZE', 'MATCH_THRESHOLD', 'MIN_CONFIDENCE_SCORE', 'CACHE_FILE',
        'MIN_FACE_RATIO', 'MAX_FACE_RATIO', 'MIN_EYE_RATIO', 'MIN_DETECTOR_CONFIDENCE',
        'FRAME_WIDTH', 'FRAME_HEIGHT', 'ENABLE_PREPROCESSING', 'REGISTRATION_CAPTURES',
        'BACKEND_URL', 'DEVICE_ID', 'SERVICE_NAME',
    ):
        monkeypatch.delenv(key, raising=False)
    return dataclasses.replace(
        load_config(),
        embedding_size=EMBEDDING_SIZE,
        cache_file=str(tmp_path / 'snapshot.pkl'),
        backend_retries=1,
        detection_timeout_seconds=1.0,
    )


@pytest.fixture
def identity_source():
    return FakeIdentitySource([
        make_identity('e1', vec(1.0), name='Alice'),
        make_identity('e2', vec(0.0, 1.0), vec(0.0, 0.0, 1.0), name='Bob'),
    ])


@pytest.fixture
def detector():
    return FakeDetector(detection=make_detection(embedding=vec(1.0)))


@pytest.fixture
def context(config, detector, identity_source):
    ctx = RecognitionContext(config, detector=detector, identity_source=identity_source)
    ctx.init()
    yield ctx
    ctx.teardown()
