# utils/sales_ops/functions_client.py
"""
Client for the hosted serverless functions (email sending, CRM sync).

Each function is a JSON-in / JSON-out POST endpoint:

    POST {base_url}/functions/v1/{name}
    Authorization: Bearer {api_key}

A function reports failure either with a non-2xx status or with an
{"error": "..."} body; both raise FunctionInvocationError. There is no
retry: callers surface the error and the user re-submits.
"""

import logging
import threading
from typing import Any, Dict, Optional

import requests

from utils.config import config

logger = logging.getLogger(__name__)

# Function names
SEND_COMMISSION_LINK = 'send-commission-link'
SEND_INVITE_EMAIL = 'send-invite-email'
SYNC_CRM_NOTES = 'sync-crm-notes'


class FunctionsNotConfiguredError(RuntimeError):
    """Raised when no functions base URL is configured."""


class FunctionInvocationError(RuntimeError):
    """Raised when a function call fails (transport, HTTP status or error body)."""

    def __init__(self, function_name: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.function_name = function_name
        self.status_code = status_code


class FunctionsClient:
    """Thin requests wrapper around the serverless functions endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None
    ):
        if not base_url:
            raise FunctionsNotConfiguredError("Functions base URL is not configured")
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})
        if api_key:
            self.session.headers.update({
                'Authorization': f'Bearer {api_key}',
                'apikey': api_key,
            })

    def function_url(self, name: str) -> str:
        return f"{self.base_url}/functions/v1/{name}"

    def invoke(self, name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Call a function and return its decoded JSON body.

        Raises:
            FunctionInvocationError: transport error, non-2xx status or error body
        """
        url = self.function_url(name)
        logger.info(f"📡 Invoking function {name}")

        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"❌ Function {name} request failed: {e}")
            raise FunctionInvocationError(name, f"network error calling {name}") from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}

        if not response.ok:
            message = body.get('error') if isinstance(body, dict) else None
            logger.error(f"❌ Function {name} returned {response.status_code}: {message or response.text[:200]}")
            raise FunctionInvocationError(
                name, message or f"{name} failed with status {response.status_code}", response.status_code
            )

        if isinstance(body, dict) and body.get('error'):
            logger.error(f"❌ Function {name} reported error: {body['error']}")
            raise FunctionInvocationError(name, str(body['error']), response.status_code)

        logger.info(f"✅ Function {name} succeeded")
        return body if isinstance(body, dict) else {'data': body}


# ==================== SINGLETON ====================

_client: Optional[FunctionsClient] = None
_client_lock = threading.Lock()


def get_functions_client() -> FunctionsClient:
    """
    Shared client built from config.

    Raises:
        FunctionsNotConfiguredError: FUNCTIONS_BASE_URL is not set
    """
    global _client

    if _client is None:
        with _client_lock:
            if _client is None:
                fn_config = config.get_functions_config()
                if not fn_config.is_configured():
                    raise FunctionsNotConfiguredError("Functions base URL is not configured")
                _client = FunctionsClient(
                    fn_config.base_url,
                    fn_config.api_key,
                    fn_config.timeout_seconds,
                )
    return _client


def reset_functions_client():
    global _client
    with _client_lock:
        _client = None
