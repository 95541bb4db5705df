"""Tests for the recognition context."""

import dataclasses
import threading

import numpy as np
import pytest

from identity_service.context import RecognitionContext
from identity_service.errors import InitializationError, LoadError, PersistenceError
from identity_service.recognition.quality import MESSAGE_TOO_SMALL
from identity_service.utils.cache import save_cache

from conftest import FakeDetector, FakeIdentitySource, make_detection, make_identity, vec

FRAME = np.zeros((720, 1280, 3), dtype=np.uint8)


class TestLifecycle:
    def test_refuses_before_init(self, config, detector, identity_source):
        ctx = RecognitionContext(config, detector=detector, identity_source=identity_source)

        with pytest.raises(InitializationError):
            ctx.identify(vec(1.0))
        with pytest.raises(InitializationError):
            ctx.evaluate(make_detection())

    def test_init_loads_identities(self, context):
        assert context.initialized
        assert len(context.store) == 2
        assert context.last_load_error is None

    def test_init_is_idempotent(self, context, detector):
        context.init()
        assert detector.init_calls == 1

    def test_detector_failure_is_fatal_until_retried(self, config, identity_source):
        detector = FakeDetector(fail_init=True)
        ctx = RecognitionContext(config, detector=detector, identity_source=identity_source)

        with pytest.raises(InitializationError):
            ctx.init()
        assert not ctx.initialized
        with pytest.raises(InitializationError):
            ctx.identify(vec(1.0))

        detector.fail_init = False
        ctx.init()
        assert ctx.initialized
        ctx.teardown()

    def test_backend_down_uses_cache(self, config, detector):
        save_cache([make_identity('cached', vec(1.0))], config.cache_file)
        ctx = RecognitionContext(config, detector=detector, identity_source=FakeIdentitySource(fail=True))

        ctx.init()

        assert ctx.initialized
        assert ctx.store.get('cached') is not None
        assert ctx.last_load_error is not None
        ctx.teardown()

    def test_backend_down_without_cache(self, config, detector):
        ctx = RecognitionContext(config, detector=detector, identity_source=FakeIdentitySource(fail=True))
        ctx.init()
        assert len(ctx.store) == 0
        assert ctx.identify(vec(1.0)).matched is False
        ctx.teardown()

    def test_teardown(self, config, detector, identity_source):
        ctx = RecognitionContext(config, detector=detector, identity_source=identity_source)
        ctx.init()
        ctx.teardown()
        assert not ctx.initialized
        with pytest.raises(InitializationError):
            ctx.identify(vec(1.0))


class TestRefresh:
    def test_failed_refresh_keeps_snapshot(self, context, identity_source):
        identity_source.fail = True

        with pytest.raises(LoadError):
            context.refresh_identities()

        assert len(context.store) == 2
        assert context.last_load_error

    def test_successful_refresh_clears_error(self, context, identity_source):
        identity_source.fail = True
        with pytest.raises(LoadError):
            context.refresh_identities()

        identity_source.fail = False
        identity_source.identities.append(make_identity('e3', vec(0.0, 0.0, 0.0, 1.0)))

        assert context.refresh_identities() == 3
        assert context.last_load_error is None


class TestRecognizeFrame:
    def test_match(self, context):
        outcome = context.recognize_frame(FRAME)

        assert outcome.detected
        assert outcome.verdict.accepted
        assert outcome.match.identity.name == 'Alice'

    def test_no_face(self, context, detector):
        detector.detection = None
        outcome = context.recognize_frame(FRAME)
        assert not outcome.detected
        assert not outcome.match.matched

    def test_rejected_face_is_not_matched(self, context, detector):
        detector.detection = make_detection(width=50, height=50, embedding=vec(1.0))

        outcome = context.recognize_frame(FRAME)

        assert outcome.verdict.message == MESSAGE_TOO_SMALL
        assert not outcome.match.matched


class TestAttendancePolicy:
    def test_separate_from_match_threshold(self, context, config):
        ctx_config = dataclasses.replace(config, match_threshold=0.75, min_confidence_score=0.8)
        context.config = ctx_config
        context.engine.config = ctx_config
        context.store.load([make_identity('E1', vec(0.22))])

        result = context.identify(vec())

        # 0.78 passes matching but not the attendance minimum
        assert result.matched
        assert not context.meets_attendance_policy(result)

    def test_confident_match(self, context):
        assert context.meets_attendance_policy(context.identify(vec(1.0)))


class TestRegistration:
    def test_new_person(self, context, identity_source, detector):
        session = context.start_registration('e9', 'Carol')
        for i in range(3):
            detector.detection = make_detection(embedding=vec(0.0, 0.0, 0.0, 0.5 + i))
            session.capture(lambda: context.detector.detect(FRAME))

        identity = context.complete_registration(session)

        assert identity.identity_id == 'e9'
        assert len(identity.embeddings) == 3
        assert len(identity_source.saved['e9']) == 3
        assert identity_source.logs == [('e9', True, pytest.approx(0.9))]
        assert context.identify(vec(0.0, 0.0, 0.0, 1.5)).identity.identity_id == 'e9'

    def test_existing_person_appends(self, context, detector):
        session = context.start_registration('e1', 'Alice')
        detector.detection = make_detection(embedding=vec(0.0, 0.0, 0.0, 3.0))
        for _ in range(3):
            session.capture(lambda: context.detector.detect(FRAME))

        context.complete_registration(session)

        assert len(context.store.get('e1').embeddings) == 4
        assert context.identify(vec(0.0, 0.0, 0.0, 3.0)).identity.identity_id == 'e1'

    def test_incomplete_session(self, context):
        session = context.start_registration('e9', 'Carol')
        with pytest.raises(ValueError):
            context.complete_registration(session)

    def test_persistence_failure_leaves_store_unchanged(self, context, identity_source):
        def refuse(identity_id, encodings):
            raise PersistenceError('backend rejected')

        identity_source.save_encodings = refuse
        session = context.start_registration('e9', 'Carol')
        for _ in range(3):
            session.capture(lambda: make_detection())

        with pytest.raises(PersistenceError):
            context.complete_registration(session)

        assert context.store.get('e9') is None

    def test_capture_and_encode_on_frame(self, context):
        embedding = context.capture_and_encode(FRAME, timeout=1.0)
        assert embedding.tolist() == vec(1.0).tolist()

    def test_wrong_length_never_reaches_backend(self, context, identity_source):
        session = context.start_registration('e9', 'Carol')
        session.embeddings.extend(np.zeros(3) for _ in range(3))
        session.quality_scores.extend([0.9, 0.9, 0.9])

        with pytest.raises(ValueError):
            context.complete_registration(session)

        assert identity_source.saved == {}
        assert context.store.get('e9') is None


class BlockingIdentitySource(FakeIdentitySource):
    """Identity source whose fetch can be held open after reading."""

    def __init__(self, identities=()):
        super().__init__(identities)
        self.block = False
        self.fetched = threading.Event()
        self.release = threading.Event()

    def fetch_identities(self):
        identities = super().fetch_identities()
        if self.block:
            self.fetched.set()
            self.release.wait(5)
        return identities


class TestRefreshDuringRegistration:
    def test_registration_survives_concurrent_refresh(self, config, detector):
        source = BlockingIdentitySource([make_identity('e1', vec(1.0), name='Alice')])
        ctx = RecognitionContext(config, detector=detector, identity_source=source)
        ctx.init()

        session = ctx.start_registration('e9', 'Carol')
        detector.detection = make_detection(embedding=vec(0.0, 0.0, 0.0, 1.0))
        for _ in range(3):
            session.capture(lambda: ctx.detector.detect(FRAME))

        source.block = True
        refresher = threading.Thread(target=ctx.refresh_identities)
        refresher.start()
        assert source.fetched.wait(2)

        registrar = threading.Thread(target=ctx.complete_registration, args=(session,))
        registrar.start()
        registrar.join(timeout=0.1)

        # The stale fetch is still open, so the save has to wait for it
        assert 'e9' not in source.saved

        source.release.set()
        refresher.join(timeout=5)
        registrar.join(timeout=5)

        assert 'e9' in source.saved
        assert ctx.store.get('e9') is not None
        assert ctx.identify(vec(0.0, 0.0, 0.0, 1.0)).identity.identity_id == 'e9'
        ctx.teardown()
