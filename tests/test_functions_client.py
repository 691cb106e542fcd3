"""Tests for the serverless functions client."""

from unittest.mock import MagicMock

import pytest
import requests

from utils.sales_ops.functions_client import (
    FunctionInvocationError, FunctionsClient, FunctionsNotConfiguredError,
)


def make_response(status=200, body=None, content=b'{}'):
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.content = content
    response.text = str(body)
    response.json.return_value = body
    return response


@pytest.fixture
def session():
    s = MagicMock()
    s.headers = {}
    return s


class TestFunctionsClient:

    def test_requires_base_url(self):
        with pytest.raises(FunctionsNotConfiguredError):
            FunctionsClient('')

    def test_headers_and_url(self, session):
        client = FunctionsClient('https://fn.example.com/', 'key-1', session=session)
        assert client.function_url('sync-crm-notes') == 'https://fn.example.com/functions/v1/sync-crm-notes'
        assert session.headers['Authorization'] == 'Bearer key-1'
        assert session.headers['Content-Type'] == 'application/json'

    def test_success(self, session):
        session.post.return_value = make_response(body={'sent': True})
        client = FunctionsClient('https://fn.example.com', session=session, timeout=5)

        assert client.invoke('send-invite-email', {'email': 'a@b.com'}) == {'sent': True}
        session.post.assert_called_once_with(
            'https://fn.example.com/functions/v1/send-invite-email',
            json={'email': 'a@b.com'}, timeout=5,
        )

    def test_non_dict_body_is_wrapped(self, session):
        session.post.return_value = make_response(body=[1, 2])
        assert FunctionsClient('https://x', session=session).invoke('f', {}) == {'data': [1, 2]}

    def test_http_error_uses_body_message(self, session):
        session.post.return_value = make_response(status=400, body={'error': 'bad email'})
        with pytest.raises(FunctionInvocationError) as exc:
            FunctionsClient('https://x', session=session).invoke('f', {})
        assert str(exc.value) == 'bad email'
        assert exc.value.status_code == 400
        assert exc.value.function_name == 'f'

    def test_http_error_without_body(self, session):
        response = make_response(status=502, content=b'')
        session.post.return_value = response
        with pytest.raises(FunctionInvocationError, match='f failed with status 502'):
            FunctionsClient('https://x', session=session).invoke('f', {})

    def test_error_body_on_success_status(self, session):
        session.post.return_value = make_response(body={'error': 'CRM not connected'})
        with pytest.raises(FunctionInvocationError, match='CRM not connected'):
            FunctionsClient('https://x', session=session).invoke('f', {})

    def test_transport_error(self, session):
        session.post.side_effect = requests.ConnectionError('refused')
        with pytest.raises(FunctionInvocationError, match='network error'):
            FunctionsClient('https://x', session=session).invoke('f', {})
