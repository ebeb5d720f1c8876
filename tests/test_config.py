"""
Unit tests for configuration module.
"""
import pytest
import os
from unittest.mock import patch
from config import Config, get_config, reset_config


class TestConfig:
    """Tests for Config class."""

    @patch.dict(os.environ, {}, clear=True)
    def test_from_env_defaults(self):
        """Test Config.from_env with nothing set."""
        config = Config.from_env()
        assert config.project_name == 'devsecops-portfolio'
        assert config.aws_region == 'us-east-1'  # default
        assert config.environment == 'prod'
        assert config.branch_name == 'main'
        assert config.github_owner == ''
        assert config.stack_wait_delay == 15
        assert config.stack_wait_max_attempts == 240
        assert config.log_level == 'INFO'  # default

    @patch.dict(os.environ, {}, clear=True)
    def test_stack_names_derive_from_project_name(self):
        """Test stack names follow <project>-<suffix> when not set."""
        config = Config(project_name='my-site')
        assert config.infrastructure_stack_name == 'my-site-infrastructure'
        assert config.infra_pipeline_stack_name == 'my-site-infra-pipeline'
        assert config.ui_pipeline_stack_name == 'my-site-ui-pipeline'

    @patch.dict(os.environ, {
        'PROJECT_NAME': 'folio',
        'AWS_REGION': 'eu-west-1',
        'ENVIRONMENT': 'dev',
        'INFRASTRUCTURE_STACK_NAME': 'custom-website',
        'GITHUB_OWNER': 'octocat',
        'BRANCH_NAME': 'release',
        'ALARM_EMAIL': 'ops@example.com',
        'STACK_WAIT_DELAY': '5',
        'STACK_WAIT_MAX_ATTEMPTS': '10',
        'LOG_LEVEL': 'debug',
    }, clear=True)
    def test_from_env_all_variables(self):
        """Test Config.from_env with all variables set."""
        config = Config.from_env()
        assert config.project_name == 'folio'
        assert config.aws_region == 'eu-west-1'
        assert config.environment == 'dev'
        assert config.infrastructure_stack_name == 'custom-website'
        assert config.infra_pipeline_stack_name == 'folio-infra-pipeline'
        assert config.github_owner == 'octocat'
        assert config.branch_name == 'release'
        assert config.alarm_email == 'ops@example.com'
        assert config.stack_wait_delay == 5
        assert config.stack_wait_max_attempts == 10
        assert config.log_level == 'DEBUG'

    @pytest.mark.parametrize('project_name', ['My-Site', 'a', '-site', 'site-', 'site_name'])
    def test_invalid_project_name(self, project_name):
        """Test project names that cannot be used in bucket names are rejected."""
        with pytest.raises(ValueError, match="PROJECT_NAME"):
            Config(project_name=project_name)

    @patch.dict(os.environ, {'ENVIRONMENT': 'qa'}, clear=True)
    def test_from_env_invalid_environment(self):
        with pytest.raises(ValueError, match="ENVIRONMENT"):
            Config.from_env()

    @patch.dict(os.environ, {'STACK_WAIT_DELAY': 'soon'}, clear=True)
    def test_from_env_non_integer_wait(self):
        with pytest.raises(ValueError, match="STACK_WAIT_DELAY must be an integer"):
            Config.from_env()

    def test_non_positive_wait(self):
        with pytest.raises(ValueError, match="STACK_WAIT_MAX_ATTEMPTS"):
            Config(stack_wait_max_attempts=0)

    @patch.dict(os.environ, {'ALARM_EMAIL': 'not-an-email'}, clear=True)
    def test_from_env_invalid_alarm_email(self):
        with pytest.raises(ValueError, match="ALARM_EMAIL"):
            Config.from_env()

    def test_invalid_stack_name(self):
        with pytest.raises(ValueError, match="UI_PIPELINE_STACK_NAME"):
            Config(ui_pipeline_stack_name='1-starts-with-digit')

    @patch.dict(os.environ, {'LOG_LEVEL': 'INVALID'}, clear=True)
    def test_from_env_invalid_log_level(self):
        """Test Config.from_env raises error for invalid log level."""
        with pytest.raises(ValueError, match="LOG_LEVEL"):
            Config.from_env()

    def test_with_overrides_ignores_none(self):
        config = Config()
        assert config.with_overrides(project_name=None, aws_region=None) is config

    def test_with_overrides_rederives_stack_names(self):
        """Test changing the project renames derived stacks only."""
        config = Config(infra_pipeline_stack_name='shared-infra-pipeline')
        overridden = config.with_overrides(project_name='other-site', environment='staging')

        assert overridden.project_name == 'other-site'
        assert overridden.environment == 'staging'
        assert overridden.infrastructure_stack_name == 'other-site-infrastructure'
        assert overridden.ui_pipeline_stack_name == 'other-site-ui-pipeline'
        assert overridden.infra_pipeline_stack_name == 'shared-infra-pipeline'

    def test_with_overrides_validates(self):
        with pytest.raises(ValueError, match="ENVIRONMENT"):
            Config().with_overrides(environment='qa')

    @patch.dict(os.environ, {}, clear=True)
    def test_get_config_singleton(self):
        """Test get_config returns singleton instance."""
        reset_config()

        config1 = get_config()
        config2 = get_config()

        assert config1 is config2

    def test_reset_config_rereads_environment(self, monkeypatch):
        first = get_config()
        monkeypatch.setenv('PROJECT_NAME', 'renamed-site')
        assert get_config() is first

        reset_config()
        assert get_config().project_name == 'renamed-site'
