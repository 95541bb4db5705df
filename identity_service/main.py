"""
Identity Service - Main Entry Point

Initializes the recognition context, keeps the identity snapshot fresh and
serves the kiosk HTTP API.
"""

import argparse
import os
import sys
import threading
from pathlib import Path

from .app import create_app
from .config import load_config
from .context import RecognitionContext
from .errors import InitializationError, LoadError
from .logging_config import setup_logging, get_logger

logger = get_logger(__name__)


def _load_local_env() -> None:
    """Load environment variables from identity_service/.env if present."""
    env_path = Path(__file__).resolve().parent / '.env'
    if not env_path.exists():
        return

    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        os.environ.setdefault(key.strip(), value.strip())


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Identity Service - Face Identification for Attendance'
    )

    parser.add_argument(
        '--backend-url',
        type=str,
        help='Backend API URL (or set BACKEND_URL)'
    )

    parser.add_argument(
        '--port',
        type=int,
        help='HTTP API port (or set API_PORT)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args(argv)

    if args.backend_url:
        os.environ['BACKEND_URL'] = args.backend_url
    if args.port is not None:
        os.environ['API_PORT'] = str(args.port)
    if args.debug:
        os.environ['DEBUG'] = 'true'

    return args


def start_refresh_thread(
    context: RecognitionContext,
    stop_flag: threading.Event
) -> threading.Thread:
    """
    Reload identities periodically until stop_flag is set.

    Args:
        context: Recognition context
        stop_flag: Event signalling shutdown

    Returns:
        Started daemon thread
    """
    interval = context.config.reload_identities_interval

    def _loop() -> None:
        while not stop_flag.wait(interval):
            logger.info('Reloading identities...')
            try:
                count = context.refresh_identities()
                logger.info(f'Reloaded {count} identities')
            except LoadError:
                # Already logged by the context; previous snapshot stays active
                continue

    thread = threading.Thread(target=_loop, daemon=True, name='IdentityRefresh')
    thread.start()
    return thread


def main() -> None:
    """Main entry point."""
    _load_local_env()
    parse_args()
    config = load_config()

    setup_logging(config.device_id, config.debug_mode)

    logger.info('=' * 60)
    logger.info('Identity Service')
    logger.info('=' * 60)
    logger.info(f'Backend: {config.backend_url}')
    logger.info(f'Match threshold: {config.match_threshold}')
    logger.info(f'Attendance minimum confidence: {config.min_confidence_score}')
    logger.info(f'Reload interval: {config.reload_identities_interval}s')
    logger.info('=' * 60)

    context = RecognitionContext(config)
    stop_flag = threading.Event()

    try:
        context.init()
    except InitializationError as e:
        logger.error(f'Fatal error: {e}')
        sys.exit(1)

    start_refresh_thread(context, stop_flag)

    try:
        app = create_app(context)
        logger.info(f'Starting API server on port {config.api_port}...')
        app.run(
            host='0.0.0.0',
            port=config.api_port,
            threaded=True,
            debug=False,
            use_reloader=False
        )
    except KeyboardInterrupt:
        logger.info('Received keyboard interrupt, shutting down...')
    except Exception as e:
        logger.error(f'Fatal error: {e}', exc_info=True)
        sys.exit(1)
    finally:
        stop_flag.set()
        context.teardown()


if __name__ == '__main__':
    main()
