# utils/__init__.py
"""
Shared Utilities Package

This package contains common utilities shared across all pages:
- auth: Authentication, session management, capability checks
- config: Configuration management (local + Streamlit Cloud)
- db: Database connection management with pooling
- sales_ops: Sales operations analytics (calls, closers, setters, PCFs,
  attribution, commissions, team)

Usage:
    from utils.auth import AuthManager
    from utils.db import get_db_engine, execute_query
    from utils.config import config

    # Or import commonly used items directly
    from utils import AuthManager, get_db_engine, config
"""

# Authentication
from .auth import (
    AuthManager,
    role_has_capability,
    require_login,
    require_capability,
)

# Configuration
from .config import (
    config,
    Config,
    IS_RUNNING_ON_CLOUD,
    APP_CONFIG,
)

# Database
from .db import (
    get_db_engine,
    check_db_connection,
    reset_db_engine,
    get_connection,
    get_transaction,
    execute_query,
    execute_query_df,
    execute_update,
    execute_returning,
    execute_many,
    get_connection_pool_status,
)

__all__ = [
    # Auth
    'AuthManager',
    'role_has_capability',
    'require_login',
    'require_capability',

    # Config
    'config',
    'Config',
    'IS_RUNNING_ON_CLOUD',
    'APP_CONFIG',

    # Database
    'get_db_engine',
    'check_db_connection',
    'reset_db_engine',
    'get_connection',
    'get_transaction',
    'execute_query',
    'execute_query_df',
    'execute_update',
    'execute_returning',
    'execute_many',
    'get_connection_pool_status',
]

__version__ = '2.0.0'
