"""
Database Configuration for the Quote Composer
Block custom data and project snapshot storage
"""

import json
import logging
import threading
from datetime import datetime, timezone

from sqlalchemy import create_engine, text
from sqlalchemy.pool import QueuePool, StaticPool

from deployment_config import DeploymentConfig
from enhanced_error_handler import PersistenceError

logger = logging.getLogger(__name__)


def _is_memory_sqlite(url):
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:")


def get_engine(url=None):
    """
    Create an engine for url (defaults to DeploymentConfig.DATABASE_URL)
    In-memory SQLite shares one connection so every session sees the same tables
    """
    url = url or DeploymentConfig.DATABASE_URL
    if url.startswith("sqlite"):
        if _is_memory_sqlite(url):
            return create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=False,
            )
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=3600,   # Recycle connections every hour
        echo=False           # Set to True for SQL logging
    )


def _utcnow():
    return datetime.now(timezone.utc).isoformat()


class BlockDataStore:
    """Key/value storage for per-block editing state and project snapshots"""

    def __init__(self, engine=None):
        self.engine = engine if engine is not None else get_engine()
        # overlay writers and request threads may share one SQLite connection
        self._lock = threading.RLock()
        self.ensure_schema()

    def ensure_schema(self):
        """Create the storage tables if they do not exist yet."""
        with self._lock, self.engine.begin() as conn:
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS block_custom_data (
                    document_id VARCHAR(128) NOT NULL,
                    block_id VARCHAR(128) NOT NULL,
                    data_key VARCHAR(128) NOT NULL,
                    value_json TEXT,
                    updated_at VARCHAR(40) NOT NULL,
                    PRIMARY KEY (document_id, block_id, data_key)
                )
            """))
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS project_snapshots (
                    project_id VARCHAR(128) NOT NULL,
                    version VARCHAR(64) NOT NULL,
                    data_json TEXT NOT NULL,
                    created_at VARCHAR(40) NOT NULL,
                    PRIMARY KEY (project_id, version)
                )
            """))

    # ----------------------- block custom data -----------------------

    def save(self, document_id, block_id, key, value):
        """Upsert one value; raises PersistenceError when the write fails."""
        try:
            params = {
                'document_id': str(document_id),
                'block_id': str(block_id),
                'data_key': str(key),
                'value_json': json.dumps(value, sort_keys=True),
                'updated_at': _utcnow(),
            }
            with self._lock, self.engine.begin() as conn:
                result = conn.execute(text("""
                    UPDATE block_custom_data
                    SET value_json = :value_json, updated_at = :updated_at
                    WHERE document_id = :document_id AND block_id = :block_id AND data_key = :data_key
                """), params)
                if result.rowcount == 0:
                    conn.execute(text("""
                        INSERT INTO block_custom_data (document_id, block_id, data_key, value_json, updated_at)
                        VALUES (:document_id, :block_id, :data_key, :value_json, :updated_at)
                    """), params)
        except Exception as e:
            logger.error(f"Failed to save {key} for block {block_id} of document {document_id}: {e}")
            raise PersistenceError(f"Could not save {key} for block {block_id}") from e

    def load(self, document_id, block_id=None):
        """
        Saved values for a document
        With block_id: {key: value}; without: {block_id: {key: value}}
        """
        sql = "SELECT block_id, data_key, value_json FROM block_custom_data WHERE document_id = :document_id"
        params = {'document_id': str(document_id)}
        if block_id is not None:
            sql += " AND block_id = :block_id"
            params['block_id'] = str(block_id)
        sql += " ORDER BY block_id, data_key"

        with self._lock, self.engine.connect() as conn:
            rows = conn.execute(text(sql), params).fetchall()

        blocks = {}
        for row_block_id, data_key, value_json in rows:
            try:
                value = json.loads(value_json) if value_json is not None else None
            except ValueError:
                logger.warning(f"Ignoring unreadable value for {row_block_id}/{data_key}")
                continue
            blocks.setdefault(row_block_id, {})[data_key] = value

        if block_id is not None:
            return blocks.get(str(block_id), {})
        return blocks

    def delete(self, document_id, block_id=None, key=None):
        """Delete saved values; returns the number of rows removed."""
        sql = "DELETE FROM block_custom_data WHERE document_id = :document_id"
        params = {'document_id': str(document_id)}
        if block_id is not None:
            sql += " AND block_id = :block_id"
            params['block_id'] = str(block_id)
        if key is not None:
            sql += " AND data_key = :data_key"
            params['data_key'] = str(key)
        with self._lock, self.engine.begin() as conn:
            return conn.execute(text(sql), params).rowcount

    def persist_fn(self, document_id):
        """Adapter with the persist(block_id, key, value) signature the overlay expects."""
        def persist(block_id, key, value):
            self.save(document_id, block_id, key, value)
        return persist

    # ----------------------- project snapshots -----------------------

    def save_project_snapshot(self, project_id, version, data):
        params = {
            'project_id': str(project_id),
            'version': str(version),
            'data_json': json.dumps(data, sort_keys=True, default=str),
            'created_at': _utcnow(),
        }
        with self._lock, self.engine.begin() as conn:
            conn.execute(text("""
                DELETE FROM project_snapshots WHERE project_id = :project_id AND version = :version
            """), {'project_id': params['project_id'], 'version': params['version']})
            conn.execute(text("""
                INSERT INTO project_snapshots (project_id, version, data_json, created_at)
                VALUES (:project_id, :version, :data_json, :created_at)
            """), params)

    def get_project_snapshot(self, project_id, version):
        """Stored snapshot as a dict, or None"""
        with self._lock, self.engine.connect() as conn:
            row = conn.execute(text("""
                SELECT data_json FROM project_snapshots
                WHERE project_id = :project_id AND version = :version
            """), {'project_id': str(project_id), 'version': str(version)}).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def list_project_versions(self, project_id):
        with self._lock, self.engine.connect() as conn:
            rows = conn.execute(text("""
                SELECT version FROM project_snapshots
                WHERE project_id = :project_id
                ORDER BY created_at, version
            """), {'project_id': str(project_id)}).fetchall()
        return [row[0] for row in rows]


def test_connection(engine=None):
    """Test database connection"""
    try:
        with (engine or get_engine()).connect() as connection:
            connection.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logging.error(f"Database connection failed: {e}")
        return False


def check_database_health(store):
    """Row counts for the storage tables"""
    health_status = {
        'connection': False,
        'tables': {},
        'total_records': 0
    }

    try:
        health_status['connection'] = test_connection(store.engine)

        if health_status['connection']:
            for table in ('block_custom_data', 'project_snapshots'):
                try:
                    with store._lock, store.engine.connect() as conn:
                        count = conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()
                    health_status['tables'][table] = count
                    health_status['total_records'] += count
                except Exception as e:
                    health_status['tables'][table] = f"Error: {e}"

        return health_status

    except Exception as e:
        logging.error(f"Database health check failed: {e}")
        health_status['error'] = str(e)
        return health_status
