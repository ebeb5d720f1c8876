"""
Tests for SiteHealthService.
"""
from unittest.mock import Mock, patch

import pytest
import requests

from services.site_health_service import SiteHealthService

URL = 'https://d111111abcdef8.cloudfront.net'

TAGGED_PAGE = '<html><head><meta name="release" content="r2"></head><body>ok</body></html>'


def response(status_code=200, text=TAGGED_PAGE):
    mock_response = Mock()
    mock_response.status_code = status_code
    mock_response.text = text
    return mock_response


@pytest.mark.services
class TestSiteHealthService:
    """Tests for SiteHealthService."""

    def test_extract_release_id(self):
        assert SiteHealthService.extract_release_id(TAGGED_PAGE) == 'r2'
        assert SiteHealthService.extract_release_id('<html><head></head></html>') is None
        assert SiteHealthService.extract_release_id('<meta name="release" content="">') is None

    @patch('services.site_health_service.requests.get')
    def test_healthy(self, mock_get):
        mock_get.return_value = response()

        result = SiteHealthService(URL, timeout=5).check()

        assert result.healthy is True
        assert result.status_code == 200
        assert result.release_id == 'r2'
        mock_get.assert_called_once_with(URL, headers=SiteHealthService.DEFAULT_HEADERS, timeout=5)

    @patch('services.site_health_service.requests.get')
    def test_expected_release(self, mock_get):
        mock_get.return_value = response()

        assert SiteHealthService(URL).check(expected_release='r2').healthy is True

        result = SiteHealthService(URL).check(expected_release='r3')
        assert result.healthy is False
        assert 'expected r3' in result.error

    @patch('services.site_health_service.requests.get')
    def test_error_status(self, mock_get):
        mock_get.return_value = response(status_code=503, text='Service Unavailable')

        result = SiteHealthService(URL).check()

        assert result.healthy is False
        assert result.status_code == 503
        assert result.error == 'Unexpected status 503'

    @patch('services.site_health_service.requests.get')
    def test_network_failure(self, mock_get):
        mock_get.side_effect = requests.ConnectionError('connection refused')

        result = SiteHealthService(URL).check()

        assert result.healthy is False
        assert result.status_code is None
        assert 'connection refused' in result.error

    @patch('services.site_health_service.requests.get')
    def test_custom_headers(self, mock_get):
        mock_get.return_value = response()
        headers = {'User-Agent': 'smoke-test'}

        SiteHealthService(URL, headers=headers).check()

        assert mock_get.call_args.kwargs['headers'] == headers
