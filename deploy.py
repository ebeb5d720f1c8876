"""
Stack deployment wrappers for the website and its two CI/CD pipelines.

Each wrapper deploys one CloudFormation stack, reads back its outputs and
produces a report with the next manual steps.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from cfn_templates import build_template
from config import Config
from logger_config import get_logger
from services.cloudformation_service import CloudFormationService, DeployResult
from services.pipeline_service import PipelineService
from services.s3_service import S3Service
from utils.exceptions import DeploymentError

logger = get_logger(__name__)

WEBSITE = "website"
INFRA_PIPELINE = "infra-pipeline"
UI_PIPELINE = "ui-pipeline"
STACK_KEYS = (WEBSITE, INFRA_PIPELINE, UI_PIPELINE)

# CloudFront only accepts web ACLs created in us-east-1
WEBSITE_REGION = "us-east-1"

# Buckets CloudFormation keeps on stack deletion; they are left untouched
RETAINED_BUCKETS = {"LoggingBucket"}

CONNECTION_STEP = [
    "Complete GitHub connection setup in AWS Console:",
    "   - Go to CodePipeline > Settings > Connections",
    "   - Find the connection and click 'Update pending connection'",
    "   - Authorize with GitHub",
]


@dataclass(frozen=True)
class StackDeployment:
    """Everything needed to deploy one stack and report on it."""

    key: str
    title: str
    banner: str
    stack_name: str
    template_name: str
    parameters: Dict[str, str]
    outputs: Tuple[Tuple[str, str], ...]
    repository_output: Optional[str] = None
    connection_output: Optional[str] = None
    content_hint: Optional[str] = None
    push_hint: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class DeploymentReport:
    """Result of deploying a stack, plus what the user has to do next."""

    deployment: StackDeployment
    result: DeployResult
    outputs: Dict[str, str] = field(default_factory=dict)
    connection_status: Optional[str] = None

    @property
    def next_steps(self) -> List[str]:
        deployment = self.deployment
        if deployment.repository_output is None:
            return [
                "Deploy the UI pipeline: portfolio-deploy deploy-ui-pipeline",
                "Publish a build: portfolio-deploy publish ./build",
                "Check the site: portfolio-deploy verify",
            ]

        steps = [f"Create GitHub repository: {self.outputs.get(deployment.repository_output, '')}"]
        if self.connection_status != "AVAILABLE":
            steps.append("\n".join(CONNECTION_STEP))
        steps.append(deployment.content_hint or "")
        steps.append(deployment.push_hint or "")
        return steps


def _common_parameters(config: Config) -> Dict[str, str]:
    parameters = {"ProjectName": config.project_name}
    if config.github_owner:
        parameters["GitHubOwner"] = config.github_owner
    parameters["BranchName"] = config.branch_name
    return parameters


def stack_deployments(config: Config) -> Dict[str, StackDeployment]:
    """Describe the three stacks for the given configuration."""
    website_parameters = {
        "ProjectName": config.project_name,
        "Environment": config.environment,
    }
    if config.alarm_email:
        website_parameters["AlarmEmail"] = config.alarm_email

    tags = {"Project": config.project_name, "Environment": config.environment}

    return {
        WEBSITE: StackDeployment(
            key=WEBSITE,
            title="Website infrastructure",
            banner="🌐 Deploying Website Infrastructure (S3 + CloudFront + WAF)...",
            stack_name=config.infrastructure_stack_name,
            template_name="website",
            parameters=website_parameters,
            outputs=(
                ("WebsiteUrl", "🌍 Website URL"),
                ("WebsiteBucketName", "🪣 Website Bucket"),
                ("CloudFrontDistributionId", "☁️ Distribution ID"),
                ("WebACLArn", "🛡️ Web ACL"),
                ("ActiveReleasePath", "🚀 Active Release"),
            ),
            tags=tags,
        ),
        INFRA_PIPELINE: StackDeployment(
            key=INFRA_PIPELINE,
            title="Infrastructure pipeline",
            banner="🏗️ Deploying Infrastructure CI/CD Pipeline...",
            stack_name=config.infra_pipeline_stack_name,
            template_name="infrastructure-pipeline",
            parameters={
                **_common_parameters(config),
                "InfrastructureStackName": config.infrastructure_stack_name,
            },
            outputs=(
                ("InfraRepositoryUrl", "📦 Infrastructure Repository"),
                ("InfraPipelineName", "🔄 Pipeline Name"),
                ("GitHubConnectionArn", "🔗 GitHub Connection ARN"),
            ),
            repository_output="InfraRepositoryUrl",
            connection_output="GitHubConnectionArn",
            content_hint="Add your infrastructure templates to the repository "
                         "(portfolio-deploy synth website --output templates/website.json)",
            push_hint=f"Push to {config.branch_name} branch to trigger infrastructure deployment",
            tags=tags,
        ),
        UI_PIPELINE: StackDeployment(
            key=UI_PIPELINE,
            title="UI pipeline",
            banner="🎨 Deploying UI CI/CD Pipeline...",
            stack_name=config.ui_pipeline_stack_name,
            template_name="ui-pipeline",
            parameters={
                **_common_parameters(config),
                "InfrastructureStackName": config.infrastructure_stack_name,
            },
            outputs=(
                ("UIRepositoryUrl", "📦 UI Repository"),
                ("UIPipelineName", "🔄 Pipeline Name"),
                ("GitHubConnectionArn", "🔗 GitHub Connection ARN"),
            ),
            repository_output="UIRepositoryUrl",
            connection_output="GitHubConnectionArn",
            content_hint="Add your portfolio UI code to the repository",
            push_hint=f"Push to {config.branch_name} branch to trigger UI deployment",
            tags=tags,
        ),
    }


def get_stack_deployment(config: Config, stack_key: str) -> StackDeployment:
    """
    Look up a stack description by key.

    Raises:
        ValueError: If the key is unknown
    """
    deployments = stack_deployments(config)
    if stack_key not in deployments:
        raise ValueError(f"Unknown stack {stack_key!r}, expected one of {list(STACK_KEYS)}")
    return deployments[stack_key]


def _services(
    config: Config,
    cfn: Optional[CloudFormationService],
    pipelines: Optional[PipelineService]
) -> Tuple[CloudFormationService, PipelineService]:
    cfn = cfn or CloudFormationService(
        region=config.aws_region,
        wait_delay=config.stack_wait_delay,
        wait_max_attempts=config.stack_wait_max_attempts,
    )
    pipelines = pipelines or PipelineService(region=config.aws_region)
    return cfn, pipelines


def deploy_stack(
    config: Config,
    stack_key: str,
    cfn: Optional[CloudFormationService] = None,
    pipelines: Optional[PipelineService] = None,
    execute: bool = True,
    fail_on_empty: bool = False
) -> DeploymentReport:
    """
    Deploy one of the stacks and collect its outputs.

    Raises:
        DeploymentError: If CloudFormation does not reach a complete state
        ValueError: If the configuration does not allow this deployment
    """
    deployment = get_stack_deployment(config, stack_key)
    cfn, pipelines = _services(config, cfn, pipelines)

    if stack_key == WEBSITE and config.aws_region != WEBSITE_REGION:
        raise ValueError(
            f"The website stack must be deployed to {WEBSITE_REGION} "
            f"(CloudFront web ACLs live there), got AWS_REGION={config.aws_region}"
        )

    if stack_key == UI_PIPELINE and not cfn.stack_exists(config.infrastructure_stack_name):
        raise DeploymentError(
            f"Stack {config.infrastructure_stack_name} does not exist. The UI pipeline reads "
            f"its exports, so deploy the website first (portfolio-deploy deploy-website)",
            stack_name=deployment.stack_name
        )

    logger.info(f"Deploying {deployment.title.lower()} to stack {deployment.stack_name}")
    result = cfn.deploy(
        deployment.stack_name,
        template=build_template(deployment.template_name),
        parameters=deployment.parameters,
        capabilities=("CAPABILITY_IAM",),
        tags=deployment.tags,
        execute=execute,
        fail_on_empty=fail_on_empty,
    )

    report = DeploymentReport(deployment=deployment, result=result)
    if not cfn.stack_exists(deployment.stack_name):
        # A previewed CREATE leaves nothing to read outputs from
        return report

    report.outputs = cfn.get_stack_outputs(deployment.stack_name)
    if deployment.connection_output and deployment.connection_output in report.outputs:
        report.connection_status = pipelines.get_connection_status(
            report.outputs[deployment.connection_output]
        )
    return report


def deploy_website(config: Config, **kwargs) -> DeploymentReport:
    return deploy_stack(config, WEBSITE, **kwargs)


def deploy_infrastructure_pipeline(config: Config, **kwargs) -> DeploymentReport:
    return deploy_stack(config, INFRA_PIPELINE, **kwargs)


def deploy_ui_pipeline(config: Config, **kwargs) -> DeploymentReport:
    return deploy_stack(config, UI_PIPELINE, **kwargs)


def format_report(report: DeploymentReport) -> List[str]:
    """Render a deployment report as the lines printed to the terminal."""
    deployment = report.deployment
    result = report.result
    lines: List[str] = []

    if result.executed:
        lines.append(f"✅ {deployment.title} deployed successfully!")
    elif result.change_set_id and result.has_changes:
        lines.append(f"📝 Change set ready for review on {deployment.stack_name} ({len(result.changes)} changes):")
        for change in result.changes:
            replacement = f" [replacement: {change['replacement']}]" if change.get("replacement") else ""
            lines.append(f"   {change['action']:<8} {change['logical_id']} ({change['resource_type']}){replacement}")
        lines.append(f"   Change set: {result.change_set_id}")
        if not report.outputs:
            return lines
    else:
        lines.append(f"✅ {deployment.title} is already up to date")

    if not report.outputs:
        return lines

    lines.append("")
    subject = "stack" if deployment.key == WEBSITE else "pipeline"
    lines.append(f"📋 Getting {subject} information...")
    for output_key, label in deployment.outputs:
        lines.append(f"{label}: {report.outputs.get(output_key, 'not available')}")
    if report.connection_status:
        lines.append(f"🔌 GitHub Connection Status: {report.connection_status}")

    lines.append("")
    lines.append("🔧 Next steps:")
    for number, step in enumerate(report.next_steps, start=1):
        lines.append(f"{number}. {step}")
    return lines


def describe_outputs(
    config: Config,
    stack_key: str,
    cfn: Optional[CloudFormationService] = None
) -> Dict[str, str]:
    """Read every output of one of the stacks."""
    deployment = get_stack_deployment(config, stack_key)
    cfn, _ = _services(config, cfn, None)
    return cfn.get_stack_outputs(deployment.stack_name)


def destroy(
    config: Config,
    stack_key: str,
    cfn: Optional[CloudFormationService] = None,
    s3_factory: Callable[[str], S3Service] = S3Service
) -> List[str]:
    """
    Empty the stack's buckets and delete the stack.

    Versioned buckets have to be emptied first or the deletion fails.
    Retained buckets (access logs) are left alone.

    Returns:
        Names of the buckets that were emptied

    Raises:
        DeploymentError: If another stack still depends on this one, or the
            deletion fails
    """
    deployment = get_stack_deployment(config, stack_key)
    cfn, _ = _services(config, cfn, None)

    if stack_key == WEBSITE and cfn.stack_exists(config.ui_pipeline_stack_name):
        raise DeploymentError(
            f"Stack {config.ui_pipeline_stack_name} imports this stack's exports, "
            f"destroy the UI pipeline first",
            stack_name=deployment.stack_name
        )

    emptied = []
    if cfn.stack_exists(deployment.stack_name):
        buckets = cfn.get_stack_resources(deployment.stack_name, "AWS::S3::Bucket")
        for logical_id, bucket_name in sorted(buckets.items()):
            if logical_id in RETAINED_BUCKETS:
                logger.info(f"Keeping retained bucket {bucket_name}")
                continue
            s3_factory(bucket_name).empty_bucket()
            emptied.append(bucket_name)

    cfn.delete_stack(deployment.stack_name)
    return emptied
