"""
Identity snapshot cache module.

Keeps the last successfully loaded identity snapshot on disk so the service
can start with stale data when the backend is unreachable.
"""

import hashlib
import os
import pickle
import time
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..logging_config import get_logger
from ..recognition.store import Identity

logger = get_logger(__name__)


def get_identities_hash(identities: Sequence[Identity]) -> str:
    """
    Compute hash of an identity list for cache validation.

    Args:
        identities: Identity records

    Returns:
        MD5 hash string
    """
    digest = hashlib.md5()
    for identity in identities:
        digest.update(f'{identity.identity_id}-{identity.name}-{len(identity.embeddings)}'.encode())
        for embedding in identity.embeddings:
            digest.update(np.ascontiguousarray(embedding, dtype=np.float64).tobytes())
    return digest.hexdigest()


def save_cache(identities: Sequence[Identity], cache_file: str) -> None:
    """
    Save identity snapshot to file.

    Args:
        identities: Identity records in store order
        cache_file: Path to cache file
    """
    records = [
        {
            'id': identity.identity_id,
            'name': identity.name,
            'embeddings': [np.asarray(e).tolist() for e in identity.embeddings],
        }
        for identity in identities
    ]
    cache_data = {
        'identities': records,
        'hash': get_identities_hash(identities),
        'timestamp': time.time(),
    }

    try:
        with open(cache_file, 'wb') as f:
            pickle.dump(cache_data, f)
        logger.info(f'Cache saved for {len(records)} identities')

    except OSError as e:
        logger.error(f'Failed to save cache: {e}')


def load_cache(cache_file: str, embedding_size: int) -> Optional[List[Identity]]:
    """
    Load identity snapshot from file.

    Args:
        cache_file: Path to cache file
        embedding_size: Required embedding length

    Returns:
        Identity records, or None if the cache is missing or invalid
    """
    if not os.path.exists(cache_file):
        logger.debug('Cache file not found')
        return None

    try:
        with open(cache_file, 'rb') as f:
            cache_data: Dict[str, Any] = pickle.load(f)

        identities = [
            Identity.create(r['id'], r['name'], r['embeddings'], embedding_size)
            for r in cache_data.get('identities', [])
        ]

        if get_identities_hash(identities) != cache_data.get('hash'):
            logger.error('Cache hash mismatch, ignoring cache')
            return None

        age = time.time() - cache_data.get('timestamp', 0)
        logger.info(f'Cache found (age: {age:.0f} seconds, {len(identities)} identities)')
        return identities

    except (OSError, pickle.UnpicklingError, EOFError, KeyError, TypeError, ValueError) as e:
        logger.error(f'Failed to load cache: {e}')
        return None
