"""
CodePipeline and CodeStar connection operations.
"""
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError

from logger_config import get_logger

logger = get_logger(__name__)


class PipelineService:
    """Service for CodePipeline and GitHub connection lookups."""

    def __init__(self, region: str = "us-east-1") -> None:
        self.region = region
        self._pipeline_client = None
        self._connections_client = None

    @property
    def pipeline_client(self):
        """Lazy initialization of CodePipeline client."""
        if self._pipeline_client is None:
            self._pipeline_client = boto3.client('codepipeline', region_name=self.region)
        return self._pipeline_client

    @property
    def connections_client(self):
        """Lazy initialization of CodeStar connections client."""
        if self._connections_client is None:
            self._connections_client = boto3.client('codestar-connections', region_name=self.region)
        return self._connections_client

    def get_connection_status(self, connection_arn: str) -> Optional[str]:
        """
        Get the status of a GitHub connection.

        New connections stay PENDING until someone completes the handshake
        in the console.

        Returns:
            'PENDING', 'AVAILABLE' or 'ERROR', or None if the lookup fails
        """
        try:
            response = self.connections_client.get_connection(ConnectionArn=connection_arn)
        except ClientError as e:
            logger.warning(f'Could not read connection {connection_arn}: {str(e)}')
            return None
        return response['Connection'].get('ConnectionStatus')

    def start_execution(self, pipeline_name: str) -> str:
        """
        Start a pipeline run.

        Returns:
            The pipeline execution ID

        Raises:
            ClientError: If CodePipeline rejects the request
        """
        try:
            response = self.pipeline_client.start_pipeline_execution(name=pipeline_name)
        except ClientError as e:
            logger.error(f'Failed to start pipeline {pipeline_name}: {str(e)}')
            raise
        execution_id = response['pipelineExecutionId']
        logger.info(f'Started pipeline {pipeline_name} execution {execution_id}')
        return execution_id

    def get_latest_execution(self, pipeline_name: str) -> Optional[Dict[str, Any]]:
        """Get the most recent execution summary, or None if the pipeline never ran."""
        response = self.pipeline_client.list_pipeline_executions(
            pipelineName=pipeline_name, maxResults=1
        )
        summaries = response.get('pipelineExecutionSummaries', [])
        return summaries[0] if summaries else None
