"""
Tests for the command decorator and logging helpers.
"""
import logging

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from logger_config import get_logger, set_log_level
from utils.decorators import EXIT_FAILURE, EXIT_INVALID, EXIT_OK, cli_command, troubleshooting_lines
from utils.exceptions import DeploymentError, ValidationError


@pytest.mark.cli
class TestCliCommand:
    """Tests for the cli_command decorator."""

    def test_none_result_is_success(self):
        @cli_command()
        def command():
            return None

        assert command() == EXIT_OK

    def test_result_is_passed_through(self):
        @cli_command()
        def command():
            return EXIT_FAILURE

        assert command() == EXIT_FAILURE

    def test_preserves_function_name(self):
        @cli_command()
        def deploy_website():
            pass

        assert deploy_website.__name__ == 'deploy_website'

    @pytest.mark.parametrize('error', [
        ValueError('PROJECT_NAME must be lowercase'),
        ValidationError('bad release id', field='release_id'),
    ])
    def test_invalid_input(self, error, capsys):
        @cli_command()
        def command():
            raise error

        assert command() == EXIT_INVALID
        assert capsys.readouterr().out.startswith('❌ Invalid configuration:')

    def test_deployment_error(self, capsys):
        @cli_command('Website infrastructure deployment failed!')
        def command():
            raise DeploymentError('Stack site is in ROLLBACK_COMPLETE state', stack_name='site',
                                  status='ROLLBACK_COMPLETE')

        assert command() == EXIT_FAILURE

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == '❌ Website infrastructure deployment failed!'
        assert lines[1] == '   Stack site is in ROLLBACK_COMPLETE state'
        assert '🔍 Troubleshooting:' in lines

    def test_default_failure_message(self, capsys):
        @cli_command()
        def start_pipeline():
            raise DeploymentError('nope')

        assert start_pipeline() == EXIT_FAILURE
        assert capsys.readouterr().out.startswith('❌ Start pipeline failed!')

    def test_aws_errors(self, capsys):
        @cli_command()
        def command():
            raise ClientError({'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, 'DescribeStacks')

        assert command() == EXIT_FAILURE
        assert 'AWS request failed' in capsys.readouterr().out

    def test_missing_credentials(self):
        @cli_command()
        def command():
            raise NoCredentialsError()

        assert command() == EXIT_FAILURE

    def test_unexpected_error(self, capsys):
        @cli_command()
        def command():
            raise KeyError('Outputs')

        assert command() == EXIT_FAILURE
        assert 'KeyError' in capsys.readouterr().out


@pytest.mark.cli
def test_troubleshooting_lines():
    error = DeploymentError(
        'failed', stack_name='site', status='UPDATE_ROLLBACK_COMPLETE',
        reasons=['Bucket: Access Denied', 'WebACL: Invalid scope']
    )

    lines = troubleshooting_lines(error)

    assert lines[:4] == [
        '   Stack: site',
        '   Status: UPDATE_ROLLBACK_COMPLETE',
        '   - Bucket: Access Denied',
        '   - WebACL: Invalid scope',
    ]
    assert '   aws cloudformation describe-stack-events --stack-name site' in lines


@pytest.mark.cli
def test_troubleshooting_lines_without_stack():
    lines = troubleshooting_lines(DeploymentError('failed'))
    assert lines[0] == ''
    assert not any('describe-stack-events' in line for line in lines)


class TestLogger:
    """Tests for logger configuration."""

    def test_get_logger_is_configured_once(self):
        logger = get_logger('tests.logger')
        same = get_logger('tests.logger')

        assert logger is same
        assert len(logger.handlers) == 1
        assert logger.propagate is False

    def test_set_log_level(self):
        logger = get_logger('tests.level')
        try:
            set_log_level('DEBUG')
            assert logger.level == logging.DEBUG
        finally:
            set_log_level('INFO')
        assert logger.level == logging.INFO

    def test_loggers_created_later_use_new_level(self):
        try:
            set_log_level('WARNING')
            logger = get_logger('tests.later')
            assert logger.level == logging.WARNING
            assert logger.handlers[0].level == logging.WARNING
        finally:
            set_log_level('INFO')
        assert get_logger('tests.later').level == logging.INFO
