# utils/auth.py
"""
Authentication Manager for Streamlit Apps

Version: 2.0.0
Features:
- SHA256 + salt password hashing
- Organization-scoped sessions (every query filters by organization_id)
- Role -> capability mapping, checked as a plain boolean
- Session management with timeout
"""

import streamlit as st
import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple, List
from functools import wraps
import logging
from sqlalchemy import text
from .db import get_db_engine
from .config import config

logger = logging.getLogger(__name__)


# ==================== ROLES & CAPABILITIES ====================

ROLE_CAPABILITIES: Dict[str, List[str]] = {
    'super_admin': [
        'view_dashboard', 'submit_pcf', 'manage_team',
        'manage_commissions', 'manage_metrics',
    ],
    'admin': [
        'view_dashboard', 'submit_pcf', 'manage_team',
        'manage_commissions', 'manage_metrics',
    ],
    'client_admin': ['view_dashboard', 'submit_pcf', 'manage_team', 'manage_metrics'],
    'member': ['view_dashboard', 'submit_pcf'],
    'sales_rep': ['submit_pcf'],
}

SESSION_KEYS = [
    'authenticated', 'user_id', 'user_email', 'user_role', 'user_fullname',
    'organization_id', 'organization_name', 'login_time', 'debug_mode',
]


def role_has_capability(role: Optional[str], capability: str) -> bool:
    """Pure lookup used by AuthManager.has_capability"""
    return capability in ROLE_CAPABILITIES.get(role or '', [])


class AuthManager:
    """Authentication manager for Streamlit apps"""

    def __init__(self):
        self.session_timeout = timedelta(
            hours=config.get_app_setting("SESSION_TIMEOUT_HOURS", 8)
        )

    # ==================== PASSWORD HASHING ====================

    def hash_password(self, password: str, salt: str = None) -> Tuple[str, str]:
        """
        Hash password with SHA256 + salt

        Returns:
            Tuple of (hash, salt)
        """
        if not salt:
            salt = secrets.token_hex(32)

        pwd_hash = hashlib.sha256((password + salt).encode()).hexdigest()
        return pwd_hash, salt

    def verify_password(self, password: str, stored_hash: str, salt: str) -> bool:
        pwd_hash, _ = self.hash_password(password, salt)
        return secrets.compare_digest(pwd_hash, stored_hash or '')

    # ==================== AUTHENTICATION ====================

    def authenticate(self, email: str, password: str) -> Tuple[bool, Dict]:
        """
        Authenticate user against the profiles table

        Args:
            email: Login email (case-insensitive)
            password: Plain text password

        Returns:
            Tuple of (success, user_info) or (False, {"error": message})
        """
        try:
            engine = get_db_engine()

            query = text("""
                SELECT
                    p.id,
                    p.email,
                    p.full_name,
                    p.password_hash,
                    p.password_salt,
                    p.is_active,
                    om.role,
                    om.organization_id,
                    o.name AS organization_name
                FROM profiles p
                LEFT JOIN organization_members om ON om.user_id = p.id
                LEFT JOIN organizations o ON o.id = om.organization_id
                WHERE LOWER(p.email) = LOWER(:email)
                ORDER BY om.created_at ASC
                LIMIT 1
            """)

            with engine.connect() as conn:
                result = conn.execute(query, {'email': email.strip()}).fetchone()

            if not result:
                logger.warning(f"Login attempt for unknown email: {email}")
                return False, {"error": "Invalid email or password. Please try again."}

            user = dict(result._mapping)

            if not user['is_active']:
                logger.warning(f"Login attempt for inactive user: {email}")
                return False, {"error": "Account is inactive. Please contact your administrator."}

            if not self.verify_password(password, user['password_hash'], user['password_salt']):
                logger.warning(f"Invalid password for user: {email}")
                return False, {"error": "Invalid email or password. Please try again."}

            if not user.get('organization_id'):
                logger.warning(f"User {email} has no organization membership")
                return False, {"error": "Your account is not linked to an organization yet."}

            self._update_last_login(user['id'])

            logger.info(f"User {email} authenticated successfully")

            return True, {
                'id': user['id'],
                'email': user['email'],
                'role': user['role'] or 'member',
                'full_name': user['full_name'] or user['email'],
                'organization_id': user['organization_id'],
                'organization_name': user['organization_name'],
                'login_time': datetime.now()
            }

        except Exception as e:
            logger.error(f"Authentication error: {e}")
            return False, {"error": "Authentication failed. Please try again."}

    def _update_last_login(self, user_id):
        try:
            engine = get_db_engine()
            query = text("UPDATE profiles SET last_login = NOW() WHERE id = :user_id")

            with engine.connect() as conn:
                conn.execute(query, {'user_id': user_id})
                conn.commit()
        except Exception as e:
            logger.warning(f"Could not update last_login: {e}")

    # ==================== SESSION MANAGEMENT ====================

    def check_session(self) -> bool:
        """Check if user session is valid and not expired"""
        if not st.session_state.get('authenticated'):
            return False

        login_time = st.session_state.get('login_time')
        if login_time and datetime.now() - login_time > self.session_timeout:
            logger.info(f"Session expired for user: {st.session_state.get('user_email')}")
            self.logout()
            return False

        return True

    def login(self, user_info: Dict):
        """Initialize user session after successful authentication"""
        st.session_state.authenticated = True
        st.session_state.user_id = user_info['id']
        st.session_state.user_email = user_info['email']
        st.session_state.user_role = user_info['role']
        st.session_state.user_fullname = user_info['full_name']
        st.session_state.organization_id = user_info['organization_id']
        st.session_state.organization_name = user_info.get('organization_name')
        st.session_state.login_time = user_info['login_time']
        st.session_state.debug_mode = config.is_feature_enabled("DEBUG_MODE")

        logger.info(f"User {user_info['email']} logged in (org {user_info['organization_id']})")

    def logout(self):
        """Clear user session and cache"""
        email = st.session_state.get('user_email', 'Unknown')

        for key in SESSION_KEYS:
            if key in st.session_state:
                del st.session_state[key]

        st.cache_data.clear()

        logger.info(f"User {email} logged out")

    # ==================== ACCESS CONTROL ====================

    def require_auth(self) -> bool:
        """
        Require authentication to access a page
        Use at the beginning of each protected page
        """
        if not self.check_session():
            st.warning("⚠️ Please login to access this page")
            st.info("Go to the main page to login")
            st.stop()
            return False
        return True

    def has_capability(self, capability: str) -> bool:
        """Boolean capability check for the current user"""
        return role_has_capability(st.session_state.get('user_role'), capability)

    def require_capability(self, capability: str) -> bool:
        """
        Stop the page unless the current user holds the capability

        Usage:
            auth.require_capability('manage_team')
        """
        if not self.require_auth():
            return False

        if not self.has_capability(capability):
            st.error("🚫 You don't have permission to view this page.")
            st.stop()
            return False

        return True

    def is_admin(self) -> bool:
        return st.session_state.get('user_role') in ('admin', 'super_admin')

    # ==================== USER INFO HELPERS ====================

    def get_user_display_name(self) -> str:
        if st.session_state.get('user_fullname'):
            return st.session_state.user_fullname
        return st.session_state.get('user_email', 'User')

    def get_organization_id(self) -> Optional[str]:
        return st.session_state.get('organization_id')

    def get_current_user(self) -> Dict:
        """Get all current user info as dictionary"""
        return {
            'id': st.session_state.get('user_id'),
            'email': st.session_state.get('user_email'),
            'role': st.session_state.get('user_role'),
            'fullname': st.session_state.get('user_fullname'),
            'organization_id': st.session_state.get('organization_id'),
            'organization_name': st.session_state.get('organization_name'),
        }


# ==================== DECORATORS ====================

def require_login(func):
    """Decorator to require login for a function"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        auth = AuthManager()
        if auth.require_auth():
            return func(*args, **kwargs)
    return wrapper


def require_capability(capability: str):
    """Decorator to require a capability"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            auth = AuthManager()
            if auth.require_capability(capability):
                return func(*args, **kwargs)
        return wrapper
    return decorator


# ==================== MODULE EXPORTS ====================

__all__ = [
    'AuthManager',
    'ROLE_CAPABILITIES',
    'role_has_capability',
    'require_login',
    'require_capability',
]
