#!/usr/bin/env python3
"""
Unit tests for the Arkacdn client

Tests cover:
- Credential refresh (token field variants, failures, missing refresh token)
- Request shape (URLs, bearer header, timeout)
- Response body decoding
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

import unittest
from unittest.mock import Mock

import requests

from arkacdn_client import ArkacdnClient, CredentialHolder, parse_body
from tests.utils import make_response

BASE = 'https://arkacdn.test/api'


class TestCredentialHolder(unittest.TestCase):
    """Test the shared bearer credential"""

    def test_replace(self):
        """Test replacing the credential"""
        holder = CredentialHolder('old')
        holder.replace('new')
        self.assertEqual(holder.get(), 'new')

    def test_truthiness(self):
        """Test an empty holder is falsy"""
        self.assertFalse(CredentialHolder())
        self.assertTrue(CredentialHolder('t'))


class TestAttemptRefresh(unittest.TestCase):
    """Test the refresh-token exchange"""

    def setUp(self):
        self.http = Mock()
        self.credentials = CredentialHolder('old-token')
        self.client = ArkacdnClient(BASE, credentials=self.credentials,
                                    refresh_token='refresh-secret', http=self.http)

    def test_no_refresh_token(self):
        """Test refresh is skipped without a refresh token"""
        client = ArkacdnClient(BASE, credentials=self.credentials, http=self.http)
        self.assertFalse(client.attempt_refresh())
        self.http.post.assert_not_called()

    def test_request_shape(self):
        """Test the refresh request carries the refresh token"""
        self.http.post.return_value = make_response(200, {'accessToken': 'new'})
        self.client.attempt_refresh()

        args, kwargs = self.http.post.call_args
        self.assertEqual(args[0], f"{BASE}/auth/refresh")
        self.assertEqual(kwargs['json'], {'refreshToken': 'refresh-secret'})

    def test_token_field_variants(self):
        """Test accessToken, access_token and token are all accepted"""
        for field in ('accessToken', 'access_token', 'token'):
            self.http.post.return_value = make_response(200, {field: f"via-{field}"})
            self.assertTrue(self.client.attempt_refresh())
            self.assertEqual(self.credentials.get(), f"via-{field}")

    def test_success_without_token(self):
        """Test a 2xx without a token reports success but keeps the credential"""
        self.http.post.return_value = make_response(200, {'ok': True})
        self.assertTrue(self.client.attempt_refresh())
        self.assertEqual(self.credentials.get(), 'old-token')

    def test_rejected_refresh(self):
        """Test a non-2xx without a token reports failure"""
        self.http.post.return_value = make_response(401, {'message': 'expired'})
        self.assertFalse(self.client.attempt_refresh())
        self.assertEqual(self.credentials.get(), 'old-token')

    def test_non_json_body(self):
        """Test a plain-text response falls back to the status"""
        self.http.post.return_value = make_response(502, 'Bad Gateway')
        self.assertFalse(self.client.attempt_refresh())

    def test_non_string_token_ignored(self):
        """Test a non-string token field is not used"""
        self.http.post.return_value = make_response(200, {'accessToken': 12345})
        self.assertTrue(self.client.attempt_refresh())
        self.assertEqual(self.credentials.get(), 'old-token')

    def test_network_error_returns_false(self):
        """Test transport failures never raise"""
        self.http.post.side_effect = requests.ConnectionError('unreachable')
        self.assertFalse(self.client.attempt_refresh())


class TestBlobRequests(unittest.TestCase):
    """Test upload and readback requests"""

    def setUp(self):
        self.http = Mock()
        self.http.post.return_value = make_response(201, {'data': {'fileId': 'f1'}})
        self.http.get.return_value = make_response(200, {})
        self.client = ArkacdnClient(BASE + '/', credentials=CredentialHolder('tok'),
                                    timeout=5, http=self.http)

    def test_base_url_trailing_slash(self):
        """Test the base url is normalised"""
        self.assertEqual(self.client.base_url, BASE)

    def test_upload_plain(self):
        """Test uploads post JSON with a bearer header"""
        payload = {'data': '{}', 'filename': 'a.json', 'description': 'd'}
        self.client.upload_plain(payload)

        args, kwargs = self.http.post.call_args
        self.assertEqual(args[0], f"{BASE}/upload/plain")
        self.assertEqual(kwargs['json'], payload)
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer tok')
        self.assertEqual(kwargs['timeout'], 5)

    def test_fetch_urls(self):
        """Test readback endpoints"""
        self.client.fetch('f1')
        self.assertEqual(self.http.get.call_args[0][0], f"{BASE}/upload/f1")
        self.client.fetch_json('f1')
        self.assertEqual(self.http.get.call_args[0][0], f"{BASE}/upload/f1/json")
        self.assertEqual(self.http.get.call_args[1]['headers'], {'Authorization': 'Bearer tok'})

    def test_refreshed_credential_is_used(self):
        """Test requests pick up a replaced credential"""
        self.client.credentials.replace('rotated')
        self.client.fetch('f1')
        self.assertEqual(self.http.get.call_args[1]['headers'], {'Authorization': 'Bearer rotated'})

    def test_has_credentials(self):
        """Test either credential counts as configured"""
        self.assertTrue(self.client.has_credentials)
        self.assertTrue(ArkacdnClient(BASE, refresh_token='r', http=self.http).has_credentials)
        self.assertFalse(ArkacdnClient(BASE, http=self.http).has_credentials)

    def test_missing_base_url(self):
        """Test the client needs a base url"""
        with self.assertRaises(ValueError):
            ArkacdnClient('', http=self.http)


class TestParseBody(unittest.TestCase):
    """Test response body decoding"""

    def test_json(self):
        self.assertEqual(parse_body(make_response(200, {'a': 1})), {'a': 1})

    def test_text(self):
        self.assertEqual(parse_body(make_response(500, 'oops')), 'oops')

    def test_empty(self):
        self.assertIsNone(parse_body(make_response(204)))


if __name__ == '__main__':
    unittest.main()
