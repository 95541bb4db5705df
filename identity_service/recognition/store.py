"""
Reference embedding store.

Holds enrolled identities and their reference embeddings as an immutable,
ordered snapshot. Writers build a new snapshot and swap the reference, so
readers always see one complete snapshot.
"""

import threading
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import LoadError, UnknownIdentityError
from ..logging_config import get_logger

logger = get_logger(__name__)


def as_embedding(values: Sequence[float], embedding_size: int) -> np.ndarray:
    """
    Convert raw values into a read-only embedding vector.

    Args:
        values: Numeric sequence or array
        embedding_size: Required length

    Returns:
        1-D float64 array of length embedding_size

    Raises:
        ValueError: If the shape is wrong or values are not finite
    """
    embedding = np.array(values, dtype=np.float64)
    if embedding.ndim != 1 or embedding.shape[0] != embedding_size:
        raise ValueError(
            f'Embedding must have length {embedding_size}, got shape {embedding.shape}'
        )
    if not np.all(np.isfinite(embedding)):
        raise ValueError('Embedding contains non-finite values')
    embedding.flags.writeable = False
    return embedding


@dataclass(frozen=True, eq=False)
class Identity:
    """
    Enrolled person.

    Attributes:
        identity_id: Unique identifier
        name: Display name
        embeddings: Reference embeddings in insertion order
    """

    identity_id: str
    name: str
    embeddings: Tuple[np.ndarray, ...] = ()

    @classmethod
    def create(
        cls,
        identity_id,
        name: str,
        embeddings: Iterable[Sequence[float]],
        embedding_size: int
    ) -> 'Identity':
        """Build an identity, validating every embedding."""
        return cls(
            identity_id=str(identity_id),
            name=name,
            embeddings=tuple(as_embedding(e, embedding_size) for e in embeddings),
        )

    def with_embedding(self, embedding: np.ndarray) -> 'Identity':
        return Identity(self.identity_id, self.name, self.embeddings + (embedding,))


class StoreSnapshot:
    """
    Immutable view of the store at one point in time.

    Iterating yields (identity, embeddings) pairs in load/append order and
    may be repeated any number of times.
    """

    def __init__(self, identities: Tuple[Identity, ...], embedding_size: int):
        self.identities = identities
        self.embedding_size = embedding_size
        self._index = {identity.identity_id: i for i, identity in enumerate(identities)}

        # Flattened references in iteration order, with owning identity index
        rows: List[np.ndarray] = []
        owners: List[int] = []
        for i, identity in enumerate(identities):
            for embedding in identity.embeddings:
                rows.append(embedding)
                owners.append(i)

        if rows:
            self.matrix = np.vstack(rows)
        else:
            self.matrix = np.empty((0, embedding_size), dtype=np.float64)
        self.matrix.flags.writeable = False
        self.owners = np.asarray(owners, dtype=np.intp)

    def __iter__(self) -> Iterator[Tuple[Identity, Tuple[np.ndarray, ...]]]:
        for identity in self.identities:
            yield identity, identity.embeddings

    def __len__(self) -> int:
        return len(self.identities)

    def __contains__(self, identity_id) -> bool:
        return str(identity_id) in self._index

    @property
    def embedding_count(self) -> int:
        return int(self.matrix.shape[0])

    def get(self, identity_id) -> Optional[Identity]:
        index = self._index.get(str(identity_id))
        return None if index is None else self.identities[index]

    def index_of(self, identity_id) -> Optional[int]:
        return self._index.get(str(identity_id))


class EmbeddingStore:
    """
    Holds the current identity snapshot.

    load(), append() and add() are serialized by a writer lock and publish
    a new snapshot by reference swap. Readers take no lock.
    """

    def __init__(self, embedding_size: int):
        """
        Initialize empty store.

        Args:
            embedding_size: Length every reference embedding must have
        """
        self.embedding_size = embedding_size
        self._snapshot = StoreSnapshot((), embedding_size)
        self._write_lock = threading.Lock()

    def snapshot(self) -> StoreSnapshot:
        """Return the current snapshot."""
        return self._snapshot

    def iterate(self) -> StoreSnapshot:
        """Return a restartable, ordered view of the current snapshot."""
        return self._snapshot

    def __len__(self) -> int:
        return len(self._snapshot)

    @property
    def embedding_count(self) -> int:
        return self._snapshot.embedding_count

    def get(self, identity_id) -> Optional[Identity]:
        return self._snapshot.get(identity_id)

    def load(self, identities: Iterable[Identity]) -> None:
        """
        Replace the whole snapshot.

        Args:
            identities: Identity records in the order they should be matched

        Raises:
            LoadError: If reading or validating the records fails. The
                previous snapshot is kept.
        """
        try:
            records = tuple(identities)
            self._validate(records)
        except LoadError:
            raise
        except Exception as e:
            logger.error(f'Identity load failed, keeping previous snapshot: {e}')
            raise LoadError(f'Failed to load identities: {e}') from e

        snapshot = StoreSnapshot(records, self.embedding_size)
        with self._write_lock:
            self._snapshot = snapshot

        logger.info(
            f'✅ Loaded {len(snapshot)} identities '
            f'({snapshot.embedding_count} reference embeddings)'
        )

    def refresh(self, source) -> None:
        """
        Reload the snapshot from a persistence collaborator.

        Args:
            source: Object with fetch_identities() returning Identity records

        Raises:
            LoadError: If the source fails. The previous snapshot is kept.
        """
        try:
            identities = source.fetch_identities()
        except LoadError:
            raise
        except Exception as e:
            logger.error(f'Identity source unavailable, keeping previous snapshot: {e}')
            raise LoadError(f'Identity source unavailable: {e}') from e

        self.load(identities)

    def append(self, identity_id, embedding: Sequence[float]) -> None:
        """
        Add a reference embedding to an existing identity.

        Only the in-memory snapshot changes; persisting is the caller's job.

        Raises:
            UnknownIdentityError: If identity_id is not in the store
            ValueError: If the embedding has the wrong length
        """
        vector = as_embedding(embedding, self.embedding_size)

        with self._write_lock:
            current = self._snapshot
            index = current.index_of(identity_id)
            if index is None:
                raise UnknownIdentityError(f'Unknown identity: {identity_id}')

            identities = list(current.identities)
            identities[index] = identities[index].with_embedding(vector)
            self._snapshot = StoreSnapshot(tuple(identities), self.embedding_size)

        logger.debug(f'Appended reference embedding to identity {identity_id}')

    def add(self, identity: Identity) -> None:
        """
        Add a new identity after all existing ones.

        Raises:
            ValueError: If the identity already exists or has invalid embeddings
        """
        self._validate((identity,))

        with self._write_lock:
            current = self._snapshot
            if identity.identity_id in current:
                raise ValueError(f'Identity {identity.identity_id} already exists')
            self._snapshot = StoreSnapshot(
                current.identities + (identity,), self.embedding_size
            )

        logger.info(f'Added identity {identity.identity_id} ({identity.name})')

    def _validate(self, records: Tuple[Identity, ...]) -> None:
        seen = set()
        for record in records:
            if not isinstance(record, Identity):
                raise ValueError(f'Expected Identity record, got {type(record).__name__}')
            if record.identity_id in seen:
                raise ValueError(f'Duplicate identity {record.identity_id}')
            seen.add(record.identity_id)
            for embedding in record.embeddings:
                if np.shape(embedding) != (self.embedding_size,):
                    raise ValueError(
                        f'Identity {record.identity_id} has embedding of shape '
                        f'{np.shape(embedding)}, expected ({self.embedding_size},)'
                    )
