"""
CloudFront service for cache invalidation and distribution status.
"""
import time
import uuid
from typing import Iterable, Optional, Any, TYPE_CHECKING

import boto3
from botocore.exceptions import ClientError, WaiterError

from logger_config import get_logger
from utils.exceptions import CloudFrontError

if TYPE_CHECKING:
    from mypy_boto3_cloudfront import CloudFrontClient
else:
    CloudFrontClient = Any

logger = get_logger(__name__)


class CloudFrontService:
    """Service for CloudFront operations."""

    def __init__(self, wait_delay: int = 20, wait_max_attempts: int = 60) -> None:
        self.wait_delay = wait_delay
        self.wait_max_attempts = wait_max_attempts
        self._client: Optional[CloudFrontClient] = None

    @property
    def client(self) -> CloudFrontClient:
        """Lazy initialization of CloudFront client (a global service)."""
        if self._client is None:
            self._client = boto3.client('cloudfront')
        return self._client

    def create_invalidation(
        self,
        distribution_id: str,
        paths: Iterable[str] = ('/*',)
    ) -> str:
        """
        Invalidate cached paths on a distribution.

        Args:
            distribution_id: CloudFront distribution ID
            paths: Paths to invalidate, each starting with '/'

        Returns:
            The invalidation ID

        Raises:
            CloudFrontError: If CloudFront rejects the request
        """
        items = list(paths)
        try:
            response = self.client.create_invalidation(
                DistributionId=distribution_id,
                InvalidationBatch={
                    'Paths': {'Quantity': len(items), 'Items': items},
                    # Must be unique, otherwise CloudFront treats it as a replay
                    'CallerReference': f'portfolio-deploy-{int(time.time())}-{uuid.uuid4().hex[:8]}',
                }
            )
        except ClientError as e:
            raise CloudFrontError(
                f'Invalidation failed: {e}',
                distribution_id=distribution_id,
                operation='create_invalidation'
            ) from e

        invalidation_id = response['Invalidation']['Id']
        logger.info(f'Created invalidation {invalidation_id} for {distribution_id} ({", ".join(items)})')
        return invalidation_id

    def wait_for_invalidation(self, distribution_id: str, invalidation_id: str) -> None:
        try:
            self.client.get_waiter('invalidation_completed').wait(
                DistributionId=distribution_id,
                Id=invalidation_id,
                WaiterConfig={'Delay': self.wait_delay, 'MaxAttempts': self.wait_max_attempts}
            )
        except WaiterError as e:
            raise CloudFrontError(
                f'Invalidation {invalidation_id} did not complete: {e}',
                distribution_id=distribution_id,
                operation='wait_for_invalidation'
            ) from e
        logger.info(f'Invalidation {invalidation_id} completed')

    def wait_for_deployment(self, distribution_id: str) -> None:
        """Wait until configuration changes have reached every edge location."""
        try:
            self.client.get_waiter('distribution_deployed').wait(
                Id=distribution_id,
                WaiterConfig={'Delay': self.wait_delay, 'MaxAttempts': self.wait_max_attempts}
            )
        except WaiterError as e:
            raise CloudFrontError(
                f'Distribution {distribution_id} did not finish deploying: {e}',
                distribution_id=distribution_id,
                operation='wait_for_deployment'
            ) from e

    def get_origin_path(self, distribution_id: str) -> str:
        """
        Get the origin path of the distribution's first origin.

        Raises:
            CloudFrontError: If the distribution cannot be read
        """
        try:
            response = self.client.get_distribution_config(Id=distribution_id)
        except ClientError as e:
            raise CloudFrontError(
                f'Could not read distribution config: {e}',
                distribution_id=distribution_id,
                operation='get_distribution_config'
            ) from e
        origins = response['DistributionConfig']['Origins'].get('Items', [])
        if not origins:
            raise CloudFrontError(
                'Distribution has no origins',
                distribution_id=distribution_id,
                operation='get_distribution_config'
            )
        return origins[0].get('OriginPath', '')
