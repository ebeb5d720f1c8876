"""
Website health checks over HTTP.
"""
from dataclasses import dataclass
from typing import Dict, Optional

import requests
from bs4 import BeautifulSoup

from logger_config import get_logger

logger = get_logger(__name__)


@dataclass
class HealthResult:
    """Result of a single health check."""

    url: str
    healthy: bool
    status_code: Optional[int] = None
    release_id: Optional[str] = None
    error: Optional[str] = None


class SiteHealthService:
    """Checks that the site answers and serves the expected release."""

    DEFAULT_HEADERS = {
        'User-Agent': 'portfolio-deploy-health-check/1.0',
        'Accept': 'text/html,application/xhtml+xml,*/*',
        # Bypass caches in between so the edge answer is what we see
        'Cache-Control': 'no-cache',
    }

    def __init__(self, url: str, timeout: int = 10, headers: Optional[Dict[str, str]] = None) -> None:
        """
        Initialize health check service.

        Args:
            url: Site URL, usually the WebsiteUrl stack output
            timeout: Request timeout in seconds
            headers: Optional custom headers (defaults to DEFAULT_HEADERS)
        """
        self.url = url
        self.timeout = timeout
        self.headers = headers or self.DEFAULT_HEADERS

    @staticmethod
    def extract_release_id(html: str) -> Optional[str]:
        """Read the release id from <meta name="release" content="...">."""
        soup = BeautifulSoup(html, 'html.parser')
        tag = soup.find('meta', attrs={'name': 'release'})
        if tag is None:
            return None
        return tag.get('content') or None

    def check(self, expected_release: Optional[str] = None) -> HealthResult:
        """
        Request the site once.

        Healthy means HTTP 200 and, when expected_release is given, a page
        tagged with that release id. Network failures yield an unhealthy
        result rather than an exception.
        """
        try:
            response = requests.get(self.url, headers=self.headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f'Health check request to {self.url} failed: {str(e)}')
            return HealthResult(url=self.url, healthy=False, error=str(e))

        release_id = self.extract_release_id(response.text)
        if response.status_code != 200:
            return HealthResult(
                url=self.url,
                healthy=False,
                status_code=response.status_code,
                release_id=release_id,
                error=f'Unexpected status {response.status_code}',
            )

        if expected_release and release_id != expected_release:
            return HealthResult(
                url=self.url,
                healthy=False,
                status_code=response.status_code,
                release_id=release_id,
                error=f'Serving release {release_id or "unknown"}, expected {expected_release}',
            )

        logger.info(f'{self.url} is healthy (release {release_id or "untagged"})')
        return HealthResult(
            url=self.url,
            healthy=True,
            status_code=response.status_code,
            release_id=release_id,
        )
