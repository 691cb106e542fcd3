# utils/config.py
"""
Centralized Configuration Management

Version: 2.0.0
Features:
- Support both local (.env) and Streamlit Cloud (secrets.toml)
- Singleton pattern for efficiency
- Type-safe getters with defaults
- Environment detection
- Lazy database validation (import never fails on a missing .env)
"""

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from typing import Dict, Any, Optional
from dataclasses import dataclass

# Initialize logger
logger = logging.getLogger(__name__)


def is_running_on_streamlit_cloud() -> bool:
    """Detect if running on Streamlit Cloud"""
    try:
        import streamlit as st
        return hasattr(st, 'secrets') and len(st.secrets) > 0
    except Exception:
        return False


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class DatabaseConfig:
    """Database configuration container (hosted Postgres)"""
    host: str
    port: int
    user: str
    password: str
    database: str = "postgres"
    sslmode: str = "require"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'database': self.database,
            'sslmode': self.sslmode,
        }

    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password)


@dataclass
class FunctionsConfig:
    """Serverless functions (email, CRM sync) endpoint configuration"""
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: int = 30

    def is_configured(self) -> bool:
        return bool(self.base_url)


@dataclass
class EmailConfig:
    """Email configuration container"""
    sender: Optional[str] = None
    password: Optional[str] = None
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587

    def is_configured(self) -> bool:
        return bool(self.sender and self.password)


class Config:
    """
    Centralized configuration management

    Usage:
        from utils.config import config

        # Get database config (raises ValueError if incomplete)
        db_config = config.get_db_config()

        # Serverless functions endpoint
        functions = config.get_functions_config()

        # Get app settings
        portal = config.get_app_setting("PORTAL_BASE_URL", "")

        # Check feature flags
        if config.is_feature_enabled("CRM_SYNC"):
            ...
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.is_cloud = is_running_on_streamlit_cloud()
        self._load_config()
        self._initialized = True

    def _load_config(self):
        """Load configuration based on environment"""
        if self.is_cloud:
            self._load_cloud_config()
        else:
            self._load_local_config()

        self._load_app_config()
        self._log_config_status()

    def _load_cloud_config(self):
        """Load configuration from Streamlit Cloud secrets"""
        import streamlit as st

        # Database
        db_secrets = st.secrets.get("DB_CONFIG", {})
        self._db_config = DatabaseConfig(
            host=db_secrets.get("host", ""),
            port=int(db_secrets.get("port", 5432)),
            user=db_secrets.get("user", ""),
            password=db_secrets.get("password", ""),
            database=db_secrets.get("database", "postgres"),
            sslmode=db_secrets.get("sslmode", "require"),
        )

        # Serverless functions
        fn_secrets = st.secrets.get("FUNCTIONS", {})
        self._functions_config = FunctionsConfig(
            base_url=fn_secrets.get("BASE_URL"),
            api_key=fn_secrets.get("API_KEY"),
            timeout_seconds=int(fn_secrets.get("TIMEOUT_SECONDS", 30)),
        )

        # Email fallback (SMTP)
        email_secrets = st.secrets.get("EMAIL", {})
        self._email_config = EmailConfig(
            sender=email_secrets.get("EMAIL_SENDER"),
            password=email_secrets.get("EMAIL_PASSWORD"),
            smtp_host=email_secrets.get("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(email_secrets.get("SMTP_PORT", 587)),
        )

        self._secret_settings = dict(st.secrets.get("APP", {}))

        logger.info("☁️ Running in STREAMLIT CLOUD")

    def _load_local_config(self):
        """Load configuration from local .env file"""
        # Find and load .env file
        env_paths = [
            Path.cwd() / ".env",
            Path(__file__).parent.parent / ".env",
        ]

        for env_path in env_paths:
            if env_path.exists():
                load_dotenv(env_path)
                logger.info(f"Loaded .env from: {env_path}")
                break

        # Database
        self._db_config = DatabaseConfig(
            host=os.getenv("DB_HOST", ""),
            port=int(os.getenv("DB_PORT", "5432")),
            user=os.getenv("DB_USER", ""),
            password=os.getenv("DB_PASSWORD", ""),
            database=os.getenv("DB_NAME", os.getenv("DB_DATABASE", "postgres")),
            sslmode=os.getenv("DB_SSLMODE", "require"),
        )

        # Serverless functions
        self._functions_config = FunctionsConfig(
            base_url=os.getenv("FUNCTIONS_BASE_URL"),
            api_key=os.getenv("FUNCTIONS_API_KEY"),
            timeout_seconds=int(os.getenv("FUNCTIONS_TIMEOUT_SECONDS", "30")),
        )

        # Email fallback (SMTP)
        self._email_config = EmailConfig(
            sender=os.getenv("EMAIL_SENDER"),
            password=os.getenv("EMAIL_PASSWORD"),
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
        )

        self._secret_settings = {}

        logger.info("💻 Running in LOCAL environment")

    def _setting(self, key: str, default: str) -> str:
        """Secrets [APP] table wins over environment variables"""
        if key in self._secret_settings:
            return str(self._secret_settings[key])
        return os.getenv(key, default)

    def _load_app_config(self):
        """Load application-specific settings"""
        self._app_config = {
            # Session
            "SESSION_TIMEOUT_HOURS": int(self._setting("SESSION_TIMEOUT_HOURS", "8")),

            # Database pool
            "DB_POOL_SIZE": int(self._setting("DB_POOL_SIZE", "5")),
            "DB_POOL_RECYCLE": int(self._setting("DB_POOL_RECYCLE", "3600")),

            # Rep portal / commissions
            "PORTAL_BASE_URL": self._setting("PORTAL_BASE_URL", "http://localhost:8501"),
            "DEFAULT_CLOSER_COMMISSION_PCT": float(self._setting("DEFAULT_CLOSER_COMMISSION_PCT", "10")),
            "DEFAULT_SETTER_COMMISSION_PCT": float(self._setting("DEFAULT_SETTER_COMMISSION_PCT", "5")),

            # Feature flags
            "ENABLE_CRM_SYNC": _as_bool(self._setting("ENABLE_CRM_SYNC", "true")),
            "ENABLE_DEBUG_MODE": _as_bool(self._setting("ENABLE_DEBUG_MODE", "false")),
        }

    def _log_config_status(self):
        """Log configuration status"""
        if self._db_config.is_configured():
            logger.info(f"✅ Database: {self._db_config.host}/{self._db_config.database}")
        else:
            logger.warning("⚠️ Database: Not configured")
        logger.info(f"✅ Functions: {'Configured' if self._functions_config.is_configured() else 'Not configured'}")
        logger.info(f"✅ SMTP: {'Configured' if self._email_config.is_configured() else 'Not configured'}")

    # ==================== PUBLIC GETTERS ====================

    def get_db_config(self) -> Dict[str, Any]:
        """
        Get database configuration as dictionary

        Raises:
            ValueError: host, user or password is missing
        """
        if not self._db_config.is_configured():
            logger.error("Missing required database configuration")
            raise ValueError("Missing required database configuration. Please check .env file.")
        return self._db_config.to_dict()

    def get_functions_config(self) -> FunctionsConfig:
        """Get serverless functions endpoint configuration"""
        return self._functions_config

    def get_email_config(self) -> Dict[str, Any]:
        """Get SMTP email configuration"""
        email = self._email_config
        return {
            "sender": email.sender,
            "password": email.password,
            "host": email.smtp_host,
            "port": email.smtp_port
        }

    def get_app_setting(self, key: str, default: Any = None) -> Any:
        """Get application setting with default"""
        return self._app_config.get(key, default)

    def is_feature_enabled(self, feature: str) -> bool:
        """Check if feature is enabled"""
        key = f"ENABLE_{feature.upper()}"
        return self._app_config.get(key, True)

    # ==================== PROPERTIES ====================

    @property
    def app_config(self) -> Dict[str, Any]:
        """Copy of all application settings"""
        return self._app_config.copy()


# ==================== SINGLETON INSTANCE ====================

config = Config()


# ==================== MODULE EXPORTS ====================

IS_RUNNING_ON_CLOUD = config.is_cloud
APP_CONFIG = config.app_config

__all__ = [
    'config',
    'Config',
    'DatabaseConfig',
    'FunctionsConfig',
    'EmailConfig',
    'IS_RUNNING_ON_CLOUD',
    'APP_CONFIG',
]
