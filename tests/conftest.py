"""
Shared fixtures for the deployment tests.
"""
import os
import sys

import pytest

# Add parent directory to path to import modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import config  # noqa: E402

CONFIG_VARIABLES = (
    'PROJECT_NAME',
    'ENVIRONMENT',
    'INFRASTRUCTURE_STACK_NAME',
    'INFRA_PIPELINE_STACK_NAME',
    'UI_PIPELINE_STACK_NAME',
    'GITHUB_OWNER',
    'BRANCH_NAME',
    'ALARM_EMAIL',
    'STACK_WAIT_DELAY',
    'STACK_WAIT_MAX_ATTEMPTS',
    'LOG_LEVEL',
)


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.setenv('AWS_REGION', 'us-east-1')


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Start every test from default configuration."""
    for variable in CONFIG_VARIABLES:
        monkeypatch.delenv(variable, raising=False)
    config.reset_config()
    yield
    config.reset_config()


@pytest.fixture
def default_config():
    return config.Config()
