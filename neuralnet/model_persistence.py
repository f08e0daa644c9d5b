"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Key/value persistence for trained network parameters.

The network only needs ``save(key, snapshot)`` and ``load(key)``. The
SQLite-backed store adds listing, metadata and age-based cleanup for the
API server.
"""

import sqlite3
import json
import os
import logging
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any, Generator
from contextlib import contextmanager
import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_MODEL_DIR = 'models'


class NetworkEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy arrays and scalars."""

    def default(self, obj: Any) -> Any:
        """
        Convert numpy values to plain Python for JSON serialization.

        Args:
            obj: Object to serialize

        Returns:
            JSON-serializable representation
        """
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.generic):
            return obj.item()
        return super().default(obj)


def _architecture_of(snapshot: Any) -> List[int]:
    """Layer widths implied by a parameter snapshot, or [] for other blobs."""
    if not isinstance(snapshot, dict):
        return []
    meta_sizes = (snapshot.get('meta_data') or {}).get('sizes')
    if meta_sizes:
        return list(meta_sizes)
    weights = snapshot.get('weights')
    if not weights:
        return []
    sizes = [len(weights[0][0]) if weights[0] else 0]
    sizes.extend(len(layer) for layer in weights)
    return sizes


class ParameterStore(ABC):
    """Opaque key -> snapshot store used by ``Network`` for persistence."""

    @abstractmethod
    def save(self, key: str, snapshot: Any) -> bool:
        """Store ``snapshot`` under ``key``, replacing any previous one."""
        pass

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        """Return the snapshot stored under ``key``, or None."""
        pass


class InMemoryParameterStore(ParameterStore):
    """Dictionary-backed store; snapshots are copied through JSON."""

    def __init__(self):
        self._blobs: Dict[str, str] = {}

    def save(self, key: str, snapshot: Any) -> bool:
        self._blobs[key] = json.dumps(snapshot, cls=NetworkEncoder)
        logger.debug(f"Stored '{key}' in memory")
        return True

    def load(self, key: str) -> Optional[Any]:
        blob = self._blobs.get(key)
        if blob is None:
            return None
        return json.loads(blob)

    def keys(self) -> List[str]:
        return list(self._blobs)


class ModelDatabase(ParameterStore):
    """
    Manages SQLite database for trained network parameters.

    The database stores:
    - The layer widths of each training, for listing
    - The snapshot itself as a JSON blob
    """

    def __init__(self, db_path: str = 'models/networks.db'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on any error, so each call is
        all-or-nothing.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS trainings (
                    training_name TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    snapshot BLOB NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON trainings(created_at DESC)
            ''')

    def save(self, key: str, snapshot: Any) -> bool:
        """
        Save a snapshot, replacing any existing one with the same key.

        The original ``created_at`` is kept on replacement.

        Args:
            key: Training name
            snapshot: JSON-serializable snapshot (numpy arrays allowed)

        Returns:
            bool: True once committed

        Raises:
            ValueError: If ``key`` is empty
            TypeError: If the snapshot is not serializable
            sqlite3.Error: On database failure
        """
        if not key or not isinstance(key, str):
            raise ValueError("Training name must be a non-empty string")

        snapshot_json = json.dumps(snapshot, cls=NetworkEncoder)
        architecture = _architecture_of(snapshot)
        architecture_json = json.dumps(architecture, cls=NetworkEncoder)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO trainings
                (training_name, architecture, snapshot, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(training_name) DO UPDATE SET
                    architecture = excluded.architecture,
                    snapshot = excluded.snapshot,
                    updated_at = CURRENT_TIMESTAMP
            ''', (key, architecture_json, snapshot_json.encode('utf-8')))

        logger.info(f"Saved training '{key}' with architecture {architecture}")
        return True

    def load(self, key: str) -> Optional[Any]:
        """
        Load a snapshot.

        Args:
            key: Training name

        Returns:
            The decoded snapshot or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT snapshot FROM trainings WHERE training_name = ?',
                (key,)
            )
            row = cursor.fetchone()

            if row is None:
                logger.warning(f"Training '{key}' not found")
                return None

            snapshot = json.loads(bytes(row['snapshot']).decode('utf-8'))
            logger.info(f"Loaded training '{key}'")
            return snapshot

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        architecture = json.loads(row['architecture'])

        # Calculate weight and bias shapes from architecture
        weights_shape = [
            [architecture[i+1], architecture[i]]
            for i in range(len(architecture) - 1)
        ]
        biases_shape = [
            architecture[i+1] for i in range(len(architecture) - 1)
        ]

        return {
            'training_name': row['training_name'],
            'architecture': architecture,
            'weights_shape': weights_shape,
            'biases_shape': biases_shape,
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def list_trainings_from_db(self) -> List[Dict[str, Any]]:
        """
        List all stored trainings with metadata, newest first.

        Returns:
            List of metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    training_name,
                    architecture,
                    created_at,
                    updated_at
                FROM trainings
                ORDER BY created_at DESC, training_name
            ''')

            trainings = [self._row_to_metadata(row) for row in cursor.fetchall()]
            logger.debug(f"Listed {len(trainings)} trainings")
            return trainings

    def delete_training_from_db(self, key: str) -> bool:
        """
        Delete a stored training.

        Args:
            key: Training name

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM trainings WHERE training_name = ?',
                (key,)
            )

            deleted = cursor.rowcount > 0
            if deleted:
                logger.info(f"Deleted training '{key}'")
            else:
                logger.warning(
                    f"Could not delete training '{key}': not found"
                )
            return deleted

    def get_training_metadata_from_db(
        self,
        key: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get training metadata without decoding the snapshot.

        Args:
            key: Training name

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    training_name,
                    architecture,
                    created_at,
                    updated_at
                FROM trainings
                WHERE training_name = ?
            ''', (key,))

            row = cursor.fetchone()
            if row is None:
                logger.warning(
                    f"Metadata for training '{key}' not found"
                )
                return None

            return self._row_to_metadata(row)

    def delete_old_trainings_from_db(self, days: int) -> int:
        """
        Delete trainings created more than ``days`` days ago.

        Args:
            days: Age threshold in days

        Returns:
            int: Number of trainings deleted

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                DELETE FROM trainings
                WHERE julianday('now') - julianday(created_at) > ?
            ''', (days,))
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} training(s) older than {days} day(s)")
        return deleted


# Global database instance
_db = None


def _get_db() -> ModelDatabase:
    """
    Get or create the global database instance.

    Returns:
        ModelDatabase: The global database instance
    """
    global _db
    if _db is None:
        _db = ModelDatabase()
    return _db


def get_store(model_dir: str = DEFAULT_MODEL_DIR) -> ModelDatabase:
    """
    Return the database for ``model_dir``.

    The default directory shares one process-wide instance.
    """
    if model_dir == DEFAULT_MODEL_DIR:
        return _get_db()
    return ModelDatabase(db_path=os.path.join(model_dir, 'networks.db'))


def save_training(
    training_name: str,
    snapshot: Dict[str, Any],
    model_dir: str = DEFAULT_MODEL_DIR
) -> bool:
    """
    Save a parameter snapshot to the SQLite database.

    Args:
        training_name: Key to store the snapshot under
        snapshot: Snapshot produced by ``Network.snapshot()``
        model_dir: Directory for the database file

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = Network([2, 3, 1], learning_rate=0.15, epochs=10)
        >>> save_training(net.training_name, net.snapshot())
        True
    """
    if not training_name or not isinstance(training_name, str):
        logger.error("Invalid training_name: must be a non-empty string")
        return False

    try:
        return get_store(model_dir).save(training_name, snapshot)

    except (TypeError, ValueError) as e:
        logger.error(
            f"Serialization error saving training '{training_name}': {e}"
        )
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving training '{training_name}': {e}")
        return False


def load_training(
    training_name: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[Dict[str, Any]]:
    """
    Load a parameter snapshot from the SQLite database.

    Args:
        training_name: Key the snapshot was stored under
        model_dir: Directory where the database is stored

    Returns:
        The snapshot dictionary or None if not found
    """
    if not training_name or not isinstance(training_name, str):
        logger.error("Invalid training_name: must be a non-empty string")
        return None

    try:
        return get_store(model_dir).load(training_name)

    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(
            f"Deserialization error loading training '{training_name}': {e}"
        )
        return None
    except sqlite3.Error as e:
        logger.error(
            f"Database error loading training '{training_name}': {e}"
        )
        return None


def list_saved_trainings(
    model_dir: str = DEFAULT_MODEL_DIR
) -> List[Dict[str, Any]]:
    """
    List all saved trainings with their metadata.

    Args:
        model_dir: Directory where the database is stored

    Returns:
        list: A list of metadata dictionaries, newest first

    Example:
        >>> for training in list_saved_trainings():
        ...     print(f"{training['training_name']}: {training['architecture']}")
    """
    try:
        return get_store(model_dir).list_trainings_from_db()

    except sqlite3.Error as e:
        logger.error(f"Database error listing trainings: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing trainings: {e}")
        return []


def delete_training(
    training_name: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> bool:
    """
    Delete a saved training from the database.

    Args:
        training_name: Key of the training to delete
        model_dir: Directory where the database is stored

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not training_name or not isinstance(training_name, str):
        logger.error("Invalid training_name: must be a non-empty string")
        return False

    try:
        return get_store(model_dir).delete_training_from_db(training_name)

    except sqlite3.Error as e:
        logger.error(
            f"Database error deleting training '{training_name}': {e}"
        )
        return False


def get_training_metadata(
    training_name: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a saved training without decoding its snapshot.

    Args:
        training_name: Key of the training
        model_dir: Directory where the database is stored

    Returns:
        dict: Training metadata or None if not found
    """
    if not training_name or not isinstance(training_name, str):
        logger.error("Invalid training_name: must be a non-empty string")
        return None

    try:
        return get_store(model_dir).get_training_metadata_from_db(training_name)

    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{training_name}': {e}"
        )
        return None
    except json.JSONDecodeError as e:
        logger.error(
            f"JSON decode error getting metadata for '{training_name}': {e}"
        )
        return None


def delete_old_trainings(
    days: int = 2,
    model_dir: str = DEFAULT_MODEL_DIR
) -> int:
    """
    Delete saved trainings older than ``days`` days.

    Args:
        days: Age threshold in days
        model_dir: Directory where the database is stored

    Returns:
        int: Number deleted, or -1 on database error

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return get_store(model_dir).delete_old_trainings_from_db(days)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting old trainings: {e}")
        return -1
