"""Tests for the face quality gate."""

import dataclasses

import pytest

from identity_service.recognition.quality import (
    MESSAGE_LOW_CONFIDENCE,
    MESSAGE_NOT_FRONTAL,
    MESSAGE_READY,
    MESSAGE_TOO_LARGE,
    MESSAGE_TOO_SMALL,
    QualityGate,
    QualityVerdict,
)

from conftest import make_detection


@pytest.fixture
def gate(config):
    return QualityGate(config)


class TestSizeRule:
    def test_too_small(self, gate):
        """Face area ratio 0.01 on a 1000x1000 frame."""
        verdict = gate.evaluate(make_detection(width=100, height=100, eye_distance=40))
        assert verdict.accepted is False
        assert verdict.message == 'move closer to the camera'

    def test_too_large(self, gate):
        verdict = gate.evaluate(make_detection(width=800, height=800))
        assert verdict == QualityVerdict(score=0.3, message=MESSAGE_TOO_LARGE, accepted=False)

    def test_lower_bound_inclusive(self, gate):
        verdict = gate.evaluate(make_detection(width=200, height=100, eye_distance=100))
        assert verdict.accepted is True

    def test_upper_bound_inclusive(self, gate):
        verdict = gate.evaluate(make_detection(width=600, height=1000, eye_distance=200))
        assert verdict.accepted is True

    def test_uses_config_frame_when_missing(self, gate):
        # 300x300 on the default 1280x720 frame is ~0.098
        verdict = gate.evaluate(make_detection(frame_size=None))
        assert verdict.accepted is True

        # 100x100 on 1280x720 is ~0.011
        verdict = gate.evaluate(make_detection(width=100, height=100, frame_size=None))
        assert verdict.message == MESSAGE_TOO_SMALL

    def test_size_checked_before_pose(self, gate):
        """A tiny face with bad pose reports size, not pose."""
        verdict = gate.evaluate(make_detection(width=50, height=50, eye_distance=0, confidence=0.1))
        assert verdict.message == MESSAGE_TOO_SMALL


class TestPoseRule:
    def test_turned_face(self, gate):
        verdict = gate.evaluate(make_detection(eye_distance=30))
        assert verdict == QualityVerdict(score=0.4, message=MESSAGE_NOT_FRONTAL, accepted=False)

    def test_threshold_is_exclusive(self, gate):
        verdict = gate.evaluate(make_detection(width=200, height=200, eye_distance=30))
        assert verdict.message == MESSAGE_NOT_FRONTAL

    def test_pose_checked_before_lighting(self, gate):
        verdict = gate.evaluate(make_detection(eye_distance=10, confidence=0.1))
        assert verdict.message == MESSAGE_NOT_FRONTAL


class TestLightingRule:
    def test_low_confidence(self, gate):
        verdict = gate.evaluate(make_detection(confidence=0.3))
        assert verdict == QualityVerdict(score=0.5, message=MESSAGE_LOW_CONFIDENCE, accepted=False)

    def test_threshold_is_exclusive(self, gate):
        verdict = gate.evaluate(make_detection(confidence=0.4))
        assert verdict.message == MESSAGE_LOW_CONFIDENCE


class TestAccept:
    def test_good_sample(self, gate):
        verdict = gate.evaluate(make_detection())
        assert verdict == QualityVerdict(score=0.9, message=MESSAGE_READY, accepted=True)

    def test_deterministic(self, gate):
        detection = make_detection(confidence=0.55)
        assert gate.evaluate(detection) == gate.evaluate(detection)

    def test_thresholds_from_config(self, config):
        strict = QualityGate(dataclasses.replace(config, min_detector_confidence=0.95))
        assert strict.evaluate(make_detection(confidence=0.9)).message == MESSAGE_LOW_CONFIDENCE
