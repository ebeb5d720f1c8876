"""
Tests for PipelineService.
"""
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError

from services.pipeline_service import PipelineService

CONNECTION_ARN = 'arn:aws:codestar-connections:us-east-1:123456789012:connection/abc'


@pytest.fixture
def service():
    service = PipelineService(region='us-east-1')
    service._pipeline_client = Mock()
    service._connections_client = Mock()
    return service


@pytest.mark.services
class TestPipelineService:
    """Tests for PipelineService."""

    @patch('services.pipeline_service.boto3')
    def test_clients_lazy_init(self, mock_boto3):
        service = PipelineService(region='eu-west-1')

        service.pipeline_client
        service.connections_client

        mock_boto3.client.assert_any_call('codepipeline', region_name='eu-west-1')
        mock_boto3.client.assert_any_call('codestar-connections', region_name='eu-west-1')

    @pytest.mark.parametrize('status', ['PENDING', 'AVAILABLE', 'ERROR'])
    def test_get_connection_status(self, service, status):
        service.connections_client.get_connection.return_value = {
            'Connection': {'ConnectionArn': CONNECTION_ARN, 'ConnectionStatus': status}
        }
        assert service.get_connection_status(CONNECTION_ARN) == status
        service.connections_client.get_connection.assert_called_once_with(ConnectionArn=CONNECTION_ARN)

    def test_get_connection_status_lookup_error(self, service):
        service.connections_client.get_connection.side_effect = ClientError(
            {'Error': {'Code': 'ResourceNotFoundException', 'Message': 'gone'}}, 'GetConnection'
        )
        assert service.get_connection_status(CONNECTION_ARN) is None

    def test_start_execution(self, service):
        service.pipeline_client.start_pipeline_execution.return_value = {'pipelineExecutionId': 'exec-1'}

        assert service.start_execution('site-ui-pipeline') == 'exec-1'
        service.pipeline_client.start_pipeline_execution.assert_called_once_with(name='site-ui-pipeline')

    def test_start_execution_error_propagates(self, service):
        service.pipeline_client.start_pipeline_execution.side_effect = ClientError(
            {'Error': {'Code': 'PipelineNotFoundException', 'Message': 'missing'}}, 'StartPipelineExecution'
        )
        with pytest.raises(ClientError):
            service.start_execution('site-ui-pipeline')

    def test_get_latest_execution(self, service):
        service.pipeline_client.list_pipeline_executions.return_value = {
            'pipelineExecutionSummaries': [{'pipelineExecutionId': 'exec-2', 'status': 'Succeeded'}]
        }
        assert service.get_latest_execution('site-ui-pipeline')['status'] == 'Succeeded'
        service.pipeline_client.list_pipeline_executions.assert_called_once_with(
            pipelineName='site-ui-pipeline', maxResults=1
        )

    def test_get_latest_execution_never_ran(self, service):
        service.pipeline_client.list_pipeline_executions.return_value = {'pipelineExecutionSummaries': []}
        assert service.get_latest_execution('site-ui-pipeline') is None
