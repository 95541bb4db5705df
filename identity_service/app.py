"""
Flask application for HTTP API.

Provides:
- GET /health: Service health check
- POST /recognize: Identify the face in an uploaded frame
- POST /identify: Identify a raw embedding
- POST /reload: Reload identities from backend
- POST /employees/<id>/face: Register an employee's face from uploaded frames
"""

import time
from typing import Any, Dict, Optional

import cv2
import numpy as np
from flask import Flask, jsonify, request
from flask_cors import CORS

from .context import RecognitionContext
from .errors import DetectionTimeout, InitializationError, LoadError, PersistenceError, QualityError
from .logging_config import get_logger
from .recognition.matching import MatchResult
from .recognition.quality import QualityVerdict
from .utils.timing import format_uptime

logger = get_logger(__name__)


class BadRequest(Exception):
    pass


def _decode_image(data: bytes) -> np.ndarray:
    """Decode uploaded image bytes into a BGR frame."""
    if not data:
        raise BadRequest('No image provided')
    nparr = np.frombuffer(data, np.uint8)
    frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if frame is None:
        raise BadRequest('Could not decode image')
    return frame


def _match_json(result: MatchResult) -> Optional[Dict[str, Any]]:
    if not result.matched:
        return None
    return {
        'identityId': result.identity.identity_id,
        'name': result.identity.name,
        'confidence': round(result.confidence, 4),
    }


def _verdict_json(verdict: Optional[QualityVerdict]) -> Optional[Dict[str, Any]]:
    if verdict is None:
        return None
    return {
        'score': verdict.score,
        'message': verdict.message,
        'accepted': verdict.accepted,
    }


def create_app(context: RecognitionContext) -> Flask:
    """
    Create and configure Flask application.

    Args:
        context: Initialized recognition context

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    CORS(app)
    config = context.config

    @app.errorhandler(BadRequest)
    def handle_bad_request(e):
        return jsonify({'error': str(e)}), 400

    @app.errorhandler(InitializationError)
    def handle_not_initialized(e):
        logger.error(f'Request refused, service not initialized: {e}')
        return jsonify({'error': str(e)}), 503

    @app.errorhandler(QualityError)
    def handle_quality(e):
        return jsonify({'error': e.message, 'quality': _verdict_json(e.verdict)}), 422

    @app.errorhandler(DetectionTimeout)
    def handle_timeout(e):
        return jsonify({'error': str(e)}), 504

    @app.errorhandler(PersistenceError)
    def handle_persistence(e):
        return jsonify({'error': str(e)}), 502

    @app.route('/health')
    def health():
        """Health check endpoint."""
        uptime = time.time() - context.started_at if context.started_at else 0.0
        return jsonify({
            'status': 'ok' if context.initialized and not context.last_load_error else 'degraded',
            'initialized': context.initialized,
            'identities': len(context.store),
            'embeddings': context.store.embedding_count,
            'lastLoadError': context.last_load_error,
            'uptime': format_uptime(uptime),
            'service': config.service_name,
            'deviceId': config.device_id,
        })

    @app.route('/recognize', methods=['POST'])
    def recognize():
        """Run detection, quality gate and identification on one frame."""
        upload = request.files.get('image')
        frame = _decode_image(upload.read() if upload else request.get_data())

        outcome = context.recognize_frame(frame)

        return jsonify({
            'detected': outcome.detected,
            'quality': _verdict_json(outcome.verdict),
            'match': _match_json(outcome.match),
            'meetsAttendancePolicy': context.meets_attendance_policy(outcome.match),
        })

    @app.route('/identify', methods=['POST'])
    def identify():
        """Identify a raw embedding."""
        body = request.get_json(silent=True)
        embedding = body.get('embedding') if isinstance(body, dict) else None
        if not isinstance(embedding, list):
            raise BadRequest('Body must contain an "embedding" list')

        try:
            result = context.identify(embedding)
        except (TypeError, ValueError) as e:
            raise BadRequest(str(e))

        return jsonify({
            'match': _match_json(result),
            'meetsAttendancePolicy': context.meets_attendance_policy(result),
        })

    @app.route('/reload', methods=['POST'])
    def reload_identities():
        """Reload identities from backend."""
        try:
            count = context.refresh_identities()
        except LoadError as e:
            return jsonify({
                'error': str(e),
                'identities': len(context.store),
            }), 503

        return jsonify({
            'identities': count,
            'embeddings': context.store.embedding_count,
        })

    @app.route('/employees/<identity_id>/face', methods=['POST'])
    def register_face(identity_id: str):
        """Register a face from the uploaded frames (one per capture)."""
        uploads = request.files.getlist('image')
        name = request.form.get('name') or identity_id

        session = context.start_registration(identity_id, name)
        if len(uploads) < session.required_captures:
            raise BadRequest(
                f'{session.required_captures} images required, got {len(uploads)}'
            )

        for index, upload in enumerate(uploads[:session.required_captures], start=1):
            frame = _decode_image(upload.read())
            try:
                session.capture(lambda frame=frame: context.detector.detect(frame))
            except QualityError as e:
                logger.info(f'Registration capture {index} rejected: {e.message}')
                return jsonify({
                    'error': e.message,
                    'capture': index,
                    'quality': _verdict_json(e.verdict),
                }), 422

        identity = context.complete_registration(session)

        return jsonify({
            'identityId': identity.identity_id,
            'name': identity.name,
            'embeddings': len(identity.embeddings),
            'qualityScore': round(session.quality_score, 2),
        }), 201

    return app
