"""
store.py
~~~~~~~~

SQLite-based catalog of networks.

Networks are stored as blobs in the binary network file format, next to
queryable metadata (unit counts, training status, last RMS error).
"""

import os
import sqlite3
import logging
from typing import Optional, List, Dict, Any, Generator
from contextlib import contextmanager

from .codec import LP64, FileLayout, dumps
from .config import model_dir as default_model_dir
from .errors import NetworkError
from .network import Network

# Configure module logger
logger = logging.getLogger(__name__)

DB_NAME = 'networks.db'

_METADATA_COLUMNS = '''
    network_id,
    num_units,
    num_input,
    num_output,
    trained,
    rms_error,
    created_at,
    updated_at
'''


def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        'network_id': row['network_id'],
        'num_units': row['num_units'],
        'num_input': row['num_input'],
        'num_output': row['num_output'],
        'trained': bool(row['trained']),
        'rms_error': row['rms_error'],
        'created_at': row['created_at'],
        'updated_at': row['updated_at']
    }


class NetworkStore:
    """
    Manages the SQLite database holding encoded networks.

    The database stores:
    - Network metadata (unit counts, training status, RMS error)
    - Networks encoded in the binary file format
    """

    def __init__(self, db_path: str, layout: FileLayout = LP64):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
            layout: File layout used to encode/decode network blobs
        """
        self.db_path = db_path
        self.layout = layout
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the catalog directory on first use."""
        catalog_dir = os.path.dirname(self.db_path)
        if catalog_dir:
            os.makedirs(catalog_dir, exist_ok=True)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Open the catalog for one unit of work.

        The transaction commits when the block finishes and rolls back if
        it raises; rows are returned as sqlite3.Row for access by column.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.debug(f"Rolled back catalog transaction on {self.db_path}: {e}")
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    num_units INTEGER NOT NULL,
                    num_input INTEGER NOT NULL,
                    num_output INTEGER NOT NULL,
                    network_data BLOB NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    rms_error REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    def save_network_to_db(
        self,
        network: Network,
        network_id: str,
        trained: bool = False,
        rms_error: Optional[float] = None
    ) -> bool:
        """
        Save a network, replacing any entry with the same id.

        The original creation time is kept when an entry is replaced.

        Args:
            network: Network to save
            network_id: Unique identifier for the network
            trained: Whether the network has been trained
            rms_error: RMS error reached by training

        Returns:
            bool: True if successful

        Raises:
            ValueError: If rms_error is negative
        """
        if rms_error is not None and rms_error < 0.0:
            raise ValueError(f"rms_error must be non-negative, got {rms_error}")

        network_data = dumps(network.units, self.layout)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO networks
                (network_id, num_units, num_input, num_output,
                 network_data, trained, rms_error, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(network_id) DO UPDATE SET
                    num_units = excluded.num_units,
                    num_input = excluded.num_input,
                    num_output = excluded.num_output,
                    network_data = excluded.network_data,
                    trained = excluded.trained,
                    rms_error = excluded.rms_error,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                network.num_units,
                network.num_input,
                network.num_output,
                network_data,
                1 if trained else 0,
                rms_error
            ))

        logger.info(
            f"Saved network '{network_id}' with {network.num_units} units, "
            f"trained={trained}, rms_error={rms_error}"
        )
        return True

    def load_network_from_db(self, network_id: str, rng=None) -> Optional[Network]:
        """
        Load a network.

        Args:
            network_id: Unique identifier of the network
            rng: Random generator handed to the decoded network

        Returns:
            Network or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT network_data FROM networks WHERE network_id = ?',
                (network_id,)
            )
            row = cursor.fetchone()

        if row is None:
            logger.warning(f"Network '{network_id}' not found")
            return None

        network = Network.from_bytes(
            row['network_data'], rng=rng, layout=self.layout
        )
        logger.info(f"Loaded network '{network_id}'")
        return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """
        List all networks with metadata, newest first.

        Returns:
            List of network metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f'''
                SELECT {_METADATA_COLUMNS}
                FROM networks
                ORDER BY created_at DESC
            ''')
            networks = [_row_to_metadata(row) for row in cursor.fetchall()]

        logger.debug(f"Listed {len(networks)} networks")
        return networks

    def delete_network_from_db(self, network_id: str) -> bool:
        """
        Delete a network.

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted network '{network_id}'")
        else:
            logger.warning(f"Could not delete network '{network_id}': not found")
        return deleted

    def get_network_metadata_from_db(self, network_id: str) -> Optional[Dict[str, Any]]:
        """
        Get network metadata without decoding the network.

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f'''
                SELECT {_METADATA_COLUMNS}
                FROM networks
                WHERE network_id = ?
            ''', (network_id,))
            row = cursor.fetchone()

        if row is None:
            logger.warning(f"Metadata for network '{network_id}' not found")
            return None
        return _row_to_metadata(row)

    def delete_old_networks_from_db(self, days: float) -> int:
        """
        Delete networks created more than ``days`` days ago.

        Returns:
            int: Number of networks deleted

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                DELETE FROM networks
                WHERE julianday('now') - julianday(created_at) > ?
            ''', (days,))
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} network(s) older than {days} day(s)")
        return deleted


def _get_store(model_dir: Optional[str]) -> NetworkStore:
    directory = model_dir if model_dir is not None else default_model_dir()
    return NetworkStore(db_path=os.path.join(directory, DB_NAME))


def save_network(
    network: Network,
    network_id: str,
    model_dir: Optional[str] = None,
    trained: bool = False,
    rms_error: Optional[float] = None
) -> bool:
    """
    Save a network to the catalog.

    Args:
        network: The network to save
        network_id: A unique identifier for the network
        model_dir: Directory for the database file (NW_MODEL_DIR if None)
        trained: Whether the network has been trained
        rms_error: RMS error reached by training

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> save_network(net, "xor", trained=True, rms_error=0.04)
        True
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _get_store(model_dir).save_network_to_db(network, network_id, trained, rms_error)
    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except NetworkError as e:
        logger.error(f"Encoding error saving network '{network_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False


def load_network(
    network_id: str,
    model_dir: Optional[str] = None,
    rng=None
) -> Optional[Network]:
    """
    Load a network from the catalog.

    Returns:
        The decoded network or None if not found or unreadable
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        return _get_store(model_dir).load_network_from_db(network_id, rng=rng)
    except NetworkError as e:
        logger.error(f"Decoding error loading network '{network_id}': {e}")
        return None
    except sqlite3.Error as e:
        logger.error(f"Database error loading network '{network_id}': {e}")
        return None


def list_saved_networks(model_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Example:
        >>> for net in list_saved_networks():
        ...     print(f"{net['network_id']}: {net['num_units']} units")
    """
    try:
        return _get_store(model_dir).list_networks_from_db()
    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []


def delete_network(network_id: str, model_dir: Optional[str] = None) -> bool:
    """
    Delete a saved network.

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _get_store(model_dir).delete_network_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False


def get_network_metadata(
    network_id: str,
    model_dir: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """Get metadata for a network without decoding it."""
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        return _get_store(model_dir).get_network_metadata_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error getting metadata for '{network_id}': {e}")
        return None


def delete_old_networks(days: float = 2, model_dir: Optional[str] = None) -> int:
    """
    Delete networks older than ``days`` days.

    Returns:
        int: Number deleted, or -1 on a database error

    Raises:
        ValueError: If days is negative
    """
    try:
        return _get_store(model_dir).delete_old_networks_from_db(days)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1
