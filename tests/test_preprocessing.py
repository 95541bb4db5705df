"""Tests for frame preprocessing."""

import dataclasses

import numpy as np

from identity_service.recognition.preprocessing import enhance_luminance, preprocess_frame


def _frame():
    rng = np.random.default_rng(7)
    return rng.integers(0, 255, size=(48, 64, 3), dtype=np.uint8)


class TestPreprocessFrame:
    def test_disabled_returns_same_frame(self, config):
        frame = _frame()
        assert preprocess_frame(frame, config) is frame

    def test_enabled_keeps_geometry(self, config):
        enabled = dataclasses.replace(config, enable_preprocessing=True)
        frame = _frame()

        result = preprocess_frame(frame, enabled)

        assert result.shape == frame.shape
        assert result.dtype == np.uint8

    def test_enhance_luminance_shape(self):
        frame = _frame()
        assert enhance_luminance(frame, 2.0).shape == frame.shape
