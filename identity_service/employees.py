"""
Employee identity module.

Backend REST client acting as the persistence collaborator: loads enrolled
employees with their face encodings and stores new registrations.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
import requests

from .config import Config
from .errors import LoadError, PersistenceError
from .logging_config import get_logger
from .recognition.store import Identity
from .utils.timing import retry_with_backoff

logger = get_logger(__name__)


class BackendIdentitySource:
    """Reads and writes employee face data through the backend API."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        """
        Initialize backend client.

        Args:
            config: Service configuration
            session: Optional requests session (shared connection pool)
        """
        self.config = config
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.config.backend_url.rstrip('/')}{path}"

    def fetch_identities(self) -> List[Identity]:
        """
        Load registered employees from backend.

        Returns:
            Identity records in backend order

        Raises:
            LoadError: If the backend cannot be reached or answers badly
        """
        url = self._url('/api/employees')
        logger.info('Loading employees from backend...')

        def _get() -> Any:
            response = self.session.get(url, timeout=self.config.backend_timeout_seconds)
            response.raise_for_status()
            return response.json()

        try:
            employees = retry_with_backoff(
                _get,
                max_attempts=self.config.backend_retries,
                retry_on=(requests.exceptions.RequestException,),
            )
        except requests.exceptions.RequestException as e:
            logger.error(f'Failed to fetch employees from backend: {e}')
            raise LoadError(f'Backend unavailable: {e}') from e
        except ValueError as e:
            logger.error(f'Backend returned invalid JSON: {e}')
            raise LoadError(f'Invalid backend response: {e}') from e

        if not isinstance(employees, list):
            raise LoadError('Invalid backend response: expected a list of employees')

        logger.info(f'Fetched {len(employees)} employees from backend')
        identities = list(self._parse_employees(employees))
        logger.info(f'✅ {len(identities)} employees with registered faces')
        return identities

    def _parse_employees(self, employees: Iterable[Dict[str, Any]]) -> Iterable[Identity]:
        for emp in employees:
            emp_id = emp.get('id')
            emp_name = emp.get('fullName') or emp.get('name') or 'Unknown'

            if emp.get('isActive') is False or not emp.get('faceRegistered'):
                continue

            encodings = emp.get('faceEncodings')
            if not isinstance(encodings, list) or not encodings:
                logger.warning(f'Employee {emp_id} is registered but has no encodings, skipping')
                continue
            if emp_id is None:
                logger.warning(f'Employee record without id ({emp_name}), skipping')
                continue

            try:
                yield Identity.create(emp_id, emp_name, encodings, self.config.embedding_size)
            except (TypeError, ValueError) as e:
                logger.warning(f'Invalid encodings for {emp_name} (ID: {emp_id}), skipping: {e}')

    def save_encodings(self, identity_id: str, encodings: Sequence[np.ndarray]) -> None:
        """
        Store the face encodings of a registered employee.

        Raises:
            PersistenceError: If the backend does not accept the data
        """
        url = self._url(f'/api/employees/{identity_id}/face')
        payload = {
            'faceEncodings': [np.asarray(e, dtype=float).tolist() for e in encodings],
            'faceRegistered': True,
            'faceRegistrationDate': datetime.now(timezone.utc).isoformat(),
        }

        logger.info(f'📤 Saving {len(encodings)} face encodings for employee {identity_id}')

        try:
            response = self.session.put(
                url, json=payload, timeout=self.config.backend_timeout_seconds
            )
        except requests.exceptions.RequestException as e:
            logger.error(f'❌ Error saving face data: {e}')
            raise PersistenceError(f'Could not save face data: {e}') from e

        if not response.ok:
            logger.error(f'❌ Failed to save face data: {response.status_code} {response.text}')
            raise PersistenceError(f'Backend rejected face data ({response.status_code})')

        logger.info('✅ Face data saved successfully')

    def log_registration(
        self,
        identity_id: str,
        success: bool,
        quality_score: float,
        attempt_number: int = 1
    ) -> bool:
        """
        Record a registration attempt.

        Returns:
            True if the log entry was stored
        """
        url = self._url('/api/face-registration-logs')
        payload = {
            'employeeId': identity_id,
            'attemptNumber': attempt_number,
            'success': success,
            'qualityScore': round(float(quality_score), 2),
            'deviceId': self.config.device_id,
        }

        try:
            response = self.session.post(
                url, json=payload, timeout=self.config.backend_timeout_seconds
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f'Could not log registration attempt: {e}')
            return False

        if not response.ok:
            logger.warning(f'Could not log registration attempt: {response.status_code}')
            return False

        return True
