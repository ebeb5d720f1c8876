"""
Tests for the portfolio-deploy command line.
"""
import datetime as dt
import json
from datetime import timezone
from pathlib import Path
from unittest.mock import patch

import pytest

import cli
import deploy
from config import Config
from releases import Release
from services.cloudformation_service import DeployResult
from services.site_health_service import HealthResult
from utils.exceptions import DeploymentError, ReleaseError


def executed_report(config_key='infra-pipeline'):
    return deploy.DeploymentReport(
        deployment=deploy.get_stack_deployment(Config(), config_key),
        result=DeployResult('stack', 'CREATE', executed=True, status='CREATE_COMPLETE'),
        outputs={'InfraRepositoryUrl': 'https://github.com/me/devsecops-portfolio-infrastructure'},
        connection_status='PENDING',
    )


@pytest.mark.cli
class TestSynth:
    """Tests for the synth command."""

    def test_synth_to_stdout(self, capsys):
        assert cli.main(['synth', 'website']) == 0
        template = json.loads(capsys.readouterr().out)
        assert 'CloudFrontDistribution' in template['Resources']

    def test_synth_to_file(self, tmp_path, capsys):
        target = tmp_path / 'templates' / 'website.json'

        assert cli.main(['synth', 'ui-pipeline', '--output', str(target)]) == 0

        assert 'Pipeline' in json.loads(target.read_text())['Resources']
        assert str(target) in capsys.readouterr().out

    def test_unknown_template_is_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(['synth', 'database'])
        assert exc_info.value.code == 2

    def test_command_required(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 2


@pytest.mark.cli
class TestDeployCommands:
    """Tests for the deploy-* commands."""

    @patch.object(deploy, 'deploy_stack')
    def test_deploy_infra_pipeline(self, mock_deploy_stack, capsys):
        mock_deploy_stack.return_value = executed_report()

        assert cli.main(['deploy-infra-pipeline']) == 0

        out = capsys.readouterr().out
        assert '🏗️ Deploying Infrastructure CI/CD Pipeline...' in out
        assert '✅ Infrastructure pipeline deployed successfully!' in out
        assert '🔧 Next steps:' in out
        config, stack_key = mock_deploy_stack.call_args.args
        assert stack_key == 'infra-pipeline'
        assert config.project_name == 'devsecops-portfolio'
        assert mock_deploy_stack.call_args.kwargs == {'execute': True, 'fail_on_empty': False}

    @patch.object(deploy, 'deploy_stack')
    def test_deploy_flags_and_overrides(self, mock_deploy_stack):
        mock_deploy_stack.return_value = executed_report('website')

        assert cli.main([
            '--project-name', 'folio', '--environment', 'dev',
            'deploy-website', '--no-execute', '--fail-on-empty',
        ]) == 0

        config, stack_key = mock_deploy_stack.call_args.args
        assert stack_key == 'website'
        assert config.project_name == 'folio'
        assert config.environment == 'dev'
        assert config.infrastructure_stack_name == 'folio-infrastructure'
        assert mock_deploy_stack.call_args.kwargs == {'execute': False, 'fail_on_empty': True}

    @patch.object(deploy, 'deploy_stack')
    def test_deployment_failure(self, mock_deploy_stack, capsys):
        mock_deploy_stack.side_effect = DeploymentError(
            'Stack devsecops-portfolio-ui-pipeline did not deploy successfully',
            stack_name='devsecops-portfolio-ui-pipeline',
            status='ROLLBACK_COMPLETE',
            reasons=['GitHubConnection: Connection name already exists'],
        )

        assert cli.main(['deploy-ui-pipeline']) == 1

        out = capsys.readouterr().out
        assert '❌ UI pipeline deployment failed!' in out
        assert '   - GitHubConnection: Connection name already exists' in out
        assert 'describe-stack-events --stack-name devsecops-portfolio-ui-pipeline' in out

    @patch.object(deploy, 'deploy_stack')
    def test_invalid_configuration(self, mock_deploy_stack, capsys):
        assert cli.main(['--project-name', 'Not_Valid', 'deploy-infra-pipeline']) == 2

        assert '❌ Invalid configuration: PROJECT_NAME' in capsys.readouterr().out
        mock_deploy_stack.assert_not_called()

    @patch.object(deploy, 'deploy_stack')
    def test_invalid_environment_variable(self, mock_deploy_stack, monkeypatch):
        monkeypatch.setenv('STACK_WAIT_DELAY', 'later')
        assert cli.main(['deploy-website']) == 2
        mock_deploy_stack.assert_not_called()

    @patch.object(cli, 'set_log_level')
    @patch.object(deploy, 'deploy_stack')
    def test_log_level_flag(self, mock_deploy_stack, mock_set_log_level):
        mock_deploy_stack.return_value = executed_report()
        cli.main(['--log-level', 'DEBUG', 'deploy-infra-pipeline'])
        mock_set_log_level.assert_called_once_with('DEBUG')


@pytest.mark.cli
class TestStackCommands:
    """Tests for outputs, start-pipeline and destroy."""

    @patch.object(deploy, 'describe_outputs')
    def test_outputs(self, mock_describe_outputs, capsys):
        mock_describe_outputs.return_value = {'WebsiteUrl': 'https://d1', 'ActiveReleasePath': '/releases/r1'}

        assert cli.main(['outputs', 'website']) == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].split() == ['ActiveReleasePath', '/releases/r1']
        assert lines[1].split() == ['WebsiteUrl', 'https://d1']

    @patch.object(cli, 'PipelineService')
    @patch.object(cli, 'CloudFormationService')
    def test_start_pipeline(self, mock_cfn_class, mock_pipeline_class, capsys):
        mock_cfn_class.return_value.get_output.return_value = 'devsecops-portfolio-ui-pipeline'
        mock_pipeline_class.return_value.start_execution.return_value = 'exec-1'

        assert cli.main(['start-pipeline', 'ui-pipeline']) == 0

        mock_cfn_class.return_value.get_output.assert_called_once_with(
            'devsecops-portfolio-ui-pipeline', 'UIPipelineName'
        )
        assert 'exec-1' in capsys.readouterr().out

    @patch.object(deploy, 'destroy')
    def test_destroy_requires_confirmation(self, mock_destroy):
        assert cli.main(['destroy', 'website']) == 2
        mock_destroy.assert_not_called()

    @patch.object(deploy, 'destroy')
    def test_destroy(self, mock_destroy, capsys):
        mock_destroy.return_value = ['site-bucket']

        assert cli.main(['destroy', 'website', '--yes']) == 0

        out = capsys.readouterr().out
        assert 'Emptied bucket site-bucket' in out
        assert 'Deleted stack devsecops-portfolio-infrastructure' in out


@pytest.mark.cli
class TestReleaseCommands:
    """Tests for publish, promote, rollback, releases and verify."""

    @pytest.fixture
    def manager(self):
        with patch.object(cli, 'ReleaseManager') as mock_manager_class:
            yield mock_manager_class.return_value

    def test_publish(self, manager, tmp_path, capsys):
        manager.publish.return_value = Release(
            'r5', dt.datetime(2024, 1, 1, tzinfo=timezone.utc), 'local', 4
        )

        assert cli.main(['publish', str(tmp_path), '--release-id', 'r5']) == 0

        manager.publish.assert_called_once_with(str(tmp_path), release_id='r5', promote=True, source='local')
        out = capsys.readouterr().out
        assert 'Published release r5 (4 files)' in out
        assert 'Release r5 is live' in out

    def test_publish_without_promote(self, manager, tmp_path, capsys):
        manager.publish.return_value = Release('r5', dt.datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert cli.main(['publish', str(tmp_path), '--no-promote']) == 0

        assert manager.publish.call_args.kwargs['promote'] is False
        assert 'portfolio-deploy promote r5' in capsys.readouterr().out

    def test_promote_already_live(self, manager, capsys):
        manager.promote.return_value = False
        assert cli.main(['promote', 'r5']) == 0
        assert 'already live' in capsys.readouterr().out

    def test_rollback_failure(self, manager, capsys):
        manager.rollback.side_effect = ReleaseError('Release r1 is the oldest release', release_id='r1')

        assert cli.main(['rollback']) == 1
        assert 'oldest release' in capsys.readouterr().out

    def test_rollback_to(self, manager, capsys):
        manager.rollback.return_value = 'r2'
        assert cli.main(['rollback', '--to', 'r2']) == 0
        manager.rollback.assert_called_once_with(to='r2')
        assert 'Rolled back to release r2' in capsys.readouterr().out

    def test_releases_marks_active(self, manager, capsys):
        manager.active_release_id.return_value = 'r2'
        manager.list_releases.return_value = [
            Release('r1', dt.datetime(2024, 1, 1, tzinfo=timezone.utc), 'seed', 3),
            Release('r2', dt.datetime(2024, 2, 1, tzinfo=timezone.utc), 'seed', 3),
        ]

        assert cli.main(['releases']) == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith('  r1')
        assert lines[1].startswith('* r2')

    def test_no_releases(self, manager, capsys):
        manager.list_releases.return_value = []
        assert cli.main(['releases']) == 0
        assert 'No releases published yet' in capsys.readouterr().out

    def test_verify_unhealthy(self, manager, capsys):
        manager.verify.return_value = HealthResult(
            url='https://d1', healthy=False, status_code=503, error='Unexpected status 503'
        )

        assert cli.main(['verify']) == 1
        assert 'Unexpected status 503' in capsys.readouterr().out

    def test_verify_healthy(self, manager):
        manager.verify.return_value = HealthResult(url='https://d1', healthy=True, status_code=200, release_id='r2')

        assert cli.main(['verify', '--release-id', 'r2', '--timeout', '5']) == 0
        manager.verify.assert_called_once_with(release_id='r2', timeout=5)

    def test_unexpected_error(self, manager, capsys):
        manager.promote.side_effect = RuntimeError('boom')
        assert cli.main(['promote', 'r5']) == 1
        assert 'RuntimeError: boom' in capsys.readouterr().out


@pytest.mark.cli
def test_pipeline_outputs_cover_pipeline_stacks():
    assert set(cli.PIPELINE_NAME_OUTPUTS) == {deploy.INFRA_PIPELINE, deploy.UI_PIPELINE}


@pytest.mark.cli
def test_console_script_metadata():
    tomllib = pytest.importorskip('tomllib')
    pyproject = Path(__file__).resolve().parent.parent / 'pyproject.toml'
    project = tomllib.loads(pyproject.read_text())['project']

    assert project['scripts'] == {'portfolio-deploy': 'cli:main'}
    assert 'readme' not in project
