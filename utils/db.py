# utils/db.py
"""
Database Connection Management (hosted Postgres)

Version: 2.0.0
Features:
- Singleton engine with thread-safe double-checked locking
- Connection pooling with pre-ping reconnect
- Health check utilities (missing configuration reported, not raised)
- Query helpers, including INSERT/UPDATE ... RETURNING
- JSON/JSONB parameter encoding for dict and list values
"""

import json
import logging
import threading
from contextlib import contextmanager
from typing import Tuple, Optional, Dict, Any, List
from urllib.parse import quote_plus

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.pool import QueuePool
from sqlalchemy.exc import OperationalError

from .config import config

logger = logging.getLogger(__name__)

# ==================== SINGLETON ENGINE ====================

_engine = None
_engine_lock = threading.Lock()


def get_db_engine():
    """
    Get SQLAlchemy database engine (singleton pattern)

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ValueError: database settings are incomplete
    """
    global _engine

    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = _create_engine()

    return _engine


def _create_engine():
    """Create new database engine with configured settings"""
    db_config = config.get_db_config()
    app_config = config.app_config

    # Build connection URL
    user = quote_plus(str(db_config["user"]))
    password = quote_plus(str(db_config["password"]))
    host = db_config["host"]
    port = db_config["port"]
    database = db_config["database"]
    sslmode = db_config.get("sslmode", "require")

    url = f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{database}?sslmode={sslmode}"

    logger.info(f"🔌 Creating database engine: postgresql+psycopg2://{user}:***@{host}:{port}/{database}")

    pool_size = app_config.get("DB_POOL_SIZE", 5)
    pool_recycle = app_config.get("DB_POOL_RECYCLE", 3600)

    engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=5,
        pool_timeout=30,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
        echo=False
    )

    logger.info(f"✅ Database engine created (pool_size={pool_size}, recycle={pool_recycle}s)")

    return engine


# ==================== CONNECTION MANAGEMENT ====================

def check_db_connection() -> Tuple[bool, Optional[str]]:
    """
    Check if database connection is healthy

    Returns:
        Tuple of (is_connected: bool, error_message: str or None)
    """
    try:
        engine = get_db_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True, None
    except ValueError as e:
        logger.error(f"❌ Database not configured: {e}")
        return False, "Database is not configured. Please check your .env or secrets."
    except OperationalError as e:
        logger.error(f"❌ Database connection failed: {e}")
        return False, "Cannot connect to database. Please check your network connection."
    except Exception as e:
        logger.error(f"❌ Database error: {e}")
        return False, "Database error. Please try again later."


def reset_db_engine():
    """Dispose the engine; the next query reconnects"""
    global _engine

    with _engine_lock:
        if _engine is not None:
            try:
                _engine.dispose()
                logger.info("🔄 Database engine disposed")
            except Exception as e:
                logger.error(f"Error disposing engine: {e}")
            _engine = None


def get_connection_pool_status() -> Dict[str, Any]:
    """Connection pool statistics for the admin status panel"""
    if _engine is None:
        return {"status": "not_initialized"}

    try:
        pool = _engine.pool
        return {
            "status": "active",
            "pool_size": pool.size(),
            "checked_in": pool.checkedin(),
            "checked_out": pool.checkedout(),
            "overflow": pool.overflow(),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}


# ==================== PARAMETERS ====================

def encode_params(params: Optional[Dict]) -> Dict:
    """
    Serialize dict/list values to JSON text for jsonb columns.

    Tuples are left alone so they keep working with expanding IN clauses.
    """
    encoded = {}
    for key, value in (params or {}).items():
        if isinstance(value, (dict, list)):
            encoded[key] = json.dumps(value, default=str)
        else:
            encoded[key] = value
    return encoded


# ==================== CONTEXT MANAGERS ====================

@contextmanager
def get_connection():
    """
    Context manager for database connections

    Usage:
        with get_connection() as conn:
            result = conn.execute(text("SELECT * FROM events"))
    """
    engine = get_db_engine()
    conn = engine.connect()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def get_transaction():
    """
    Context manager for database transactions

    Usage:
        with get_transaction() as conn:
            conn.execute(text("INSERT INTO post_call_forms ..."), params)
            conn.execute(text("UPDATE events ..."), params)
            # Commit on success, rollback on exception
    """
    engine = get_db_engine()
    conn = engine.connect()
    trans = conn.begin()
    try:
        yield conn
        trans.commit()
    except Exception:
        trans.rollback()
        raise
    finally:
        conn.close()


# ==================== QUERY HELPERS ====================

def execute_query(query: str, params: Dict = None) -> List[Dict]:
    """
    Execute SELECT query and return results as list of dicts

    Args:
        query: SQL query string
        params: Query parameters

    Returns:
        List of dictionaries
    """
    engine = get_db_engine()

    with engine.connect() as conn:
        result = conn.execute(text(query), encode_params(params))
        return [dict(row._mapping) for row in result]


def execute_query_df(query: str, params: Dict = None) -> pd.DataFrame:
    """Execute SELECT query and return results as DataFrame"""
    engine = get_db_engine()
    return pd.read_sql(text(query), engine, params=encode_params(params))


def execute_update(query: str, params: Dict = None) -> int:
    """
    Execute INSERT/UPDATE/DELETE query

    Returns:
        Number of affected rows
    """
    engine = get_db_engine()

    with engine.connect() as conn:
        result = conn.execute(text(query), encode_params(params))
        conn.commit()
        return result.rowcount


def execute_returning(query: str, params: Dict = None) -> Optional[Dict]:
    """
    Execute INSERT/UPDATE ... RETURNING and return the first row

    Returns:
        Row as dict, or None when nothing was written
    """
    engine = get_db_engine()

    with engine.connect() as conn:
        row = conn.execute(text(query), encode_params(params)).fetchone()
        conn.commit()
        return dict(row._mapping) if row is not None else None


def execute_many(query: str, params_list: List[Dict]) -> int:
    """
    Execute query with multiple parameter sets in one transaction

    Returns:
        Total number of affected rows
    """
    total_rows = 0

    with get_transaction() as conn:
        for params in params_list:
            result = conn.execute(text(query), encode_params(params))
            total_rows += result.rowcount

    return total_rows


# ==================== EXPORTS ====================

__all__ = [
    'get_db_engine',
    'check_db_connection',
    'reset_db_engine',
    'get_connection_pool_status',
    'encode_params',
    'get_connection',
    'get_transaction',
    'execute_query',
    'execute_query_df',
    'execute_update',
    'execute_returning',
    'execute_many',
]
