"""
Embedding matching module.

Matches face embeddings against enrolled identities using Euclidean distance.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from ..config import Config
from ..logging_config import get_logger
from .store import EmbeddingStore, Identity, StoreSnapshot

logger = get_logger(__name__)


def confidence_from_distance(distance: float) -> float:
    """
    Map Euclidean distance to confidence.

    Returns:
        max(0, 1 - distance): 1.0 for identical embeddings, 0.0 at distance >= 1
    """
    return max(0.0, 1.0 - float(distance))


@dataclass(frozen=True)
class MatchResult:
    """
    Result of an identification.

    identity is None when nothing exceeded the threshold; confidence is
    then 0.0.
    """

    identity: Optional[Identity]
    confidence: float

    @property
    def matched(self) -> bool:
        return self.identity is not None


NO_MATCH = MatchResult(identity=None, confidence=0.0)


def best_match(
    query: np.ndarray,
    snapshot: StoreSnapshot,
    threshold: float
) -> MatchResult:
    """
    Find the best matching identity in a snapshot.

    Args:
        query: Query embedding
        snapshot: Store snapshot to search
        threshold: Confidence a match must exceed

    Returns:
        MatchResult; ties go to the identity first in snapshot order
    """
    if snapshot.embedding_count == 0:
        return NO_MATCH

    distances = np.linalg.norm(snapshot.matrix - query, axis=1)
    confidences = np.maximum(0.0, 1.0 - distances)

    # argmax returns the first occurrence, i.e. earliest in iteration order
    best_idx = int(np.argmax(confidences))
    best_confidence = float(confidences[best_idx])

    if best_confidence > threshold:
        identity = snapshot.identities[int(snapshot.owners[best_idx])]
        return MatchResult(identity=identity, confidence=best_confidence)

    logger.debug(f'No match (best confidence {best_confidence:.3f} <= {threshold})')
    return NO_MATCH


class MatchingEngine:
    """Identifies query embeddings against the embedding store."""

    def __init__(self, store: EmbeddingStore, config: Config):
        """
        Initialize matching engine.

        Args:
            store: Embedding store to search
            config: Service configuration
        """
        self.store = store
        self.config = config

    def identify(self, query: Sequence[float]) -> MatchResult:
        """
        Identify a query embedding.

        Reads the store snapshot once, so a concurrent load() cannot
        affect a call in progress.

        Raises:
            ValueError: If the query has the wrong length
        """
        vector = np.asarray(query, dtype=np.float64)
        if vector.shape != (self.store.embedding_size,):
            raise ValueError(
                f'Query embedding must have length {self.store.embedding_size}, '
                f'got shape {vector.shape}'
            )

        snapshot = self.store.snapshot()
        result = best_match(vector, snapshot, self.config.match_threshold)

        if result.matched:
            logger.info(
                f'Matched identity {result.identity.identity_id} '
                f'({result.confidence:.0%})'
            )
        return result
