"""
CI/CD pipeline for the infrastructure repository.

Source (GitHub) -> Validate (cfn-lint, cfn_nag) -> Deploy (change set,
manual approval, execute) against the website stack.
"""
from typing import Any, Dict

from .intrinsics import get_att, output, parameter, ref, sub
from .pipeline_common import (
    artifact_bucket,
    artifact_statements,
    build_action,
    build_log_statement,
    codebuild_project,
    github_connection,
    pipeline,
    pipeline_parameters,
    pipeline_role_statements,
    repository_url,
    service_role,
    source_stage,
)

REPOSITORY_SUFFIX = "infrastructure"
TEMPLATE_PATH = "templates/website.json"
CHANGE_SET_NAME = "pipeline-change-set"
VALIDATE_OUTPUT = "ValidateOutput"
# Running stack's parameter values for the change set; CodePipeline uses
# template defaults for anything missing, ActiveReleasePath included
TEMPLATE_CONFIGURATION = "template-configuration.json"
CURRENT_PARAMETERS_FILTER = (
    "{Parameters: ((. // [])"
    " | map(select(.ParameterKey as $key | $template[0].Parameters | has($key)))"
    " | map({(.ParameterKey): .ParameterValue}) | add // {})}"
)

VALIDATE_BUILDSPEC = {
    "version": 0.2,
    "phases": {
        "install": {
            "runtime-versions": {"python": "3.12", "ruby": "3.2"},
            "commands": ["pip install --quiet cfn-lint", "gem install cfn-nag --no-document"],
        },
        "build": {
            "commands": [
                "cfn-lint templates/*.json",
                "cfn_nag_scan --input-path templates",
                f"aws cloudformation validate-template --template-body file://{TEMPLATE_PATH}",
                'aws cloudformation describe-stacks --stack-name "$INFRASTRUCTURE_STACK_NAME" '
                '--query "Stacks[0].Parameters" --output json > current-parameters.json '
                '|| echo "[]" > current-parameters.json',
                f"jq --slurpfile template {TEMPLATE_PATH} '{CURRENT_PARAMETERS_FILTER}' "
                f"current-parameters.json > {TEMPLATE_CONFIGURATION}",
            ]
        },
    },
    "artifacts": {"files": [TEMPLATE_CONFIGURATION]},
}


def _cloudformation_action(name: str, run_order: int, **configuration: Any) -> Dict[str, Any]:
    action = {
        "Name": name,
        "ActionTypeId": {"Category": "Deploy", "Owner": "AWS", "Provider": "CloudFormation", "Version": "1"},
        "Configuration": {
            "StackName": ref("InfrastructureStackName"),
            "ChangeSetName": CHANGE_SET_NAME,
            **configuration,
        },
        "RunOrder": run_order,
    }
    if "TemplatePath" in configuration:
        action["InputArtifacts"] = [{"Name": "SourceOutput"}, {"Name": VALIDATE_OUTPUT}]
    return action


def build_infrastructure_pipeline_template() -> Dict[str, Any]:
    """Build the infrastructure pipeline template."""
    stack_arn = sub(
        "arn:aws:cloudformation:${AWS::Region}:${AWS::AccountId}:stack/${InfrastructureStackName}/*"
    )

    deploy_stage = {
        "Name": "Deploy",
        "Actions": [
            _cloudformation_action(
                "CreateChangeSet", 1,
                ActionMode="CHANGE_SET_REPLACE",
                TemplatePath=f"SourceOutput::{TEMPLATE_PATH}",
                TemplateConfiguration=f"{VALIDATE_OUTPUT}::{TEMPLATE_CONFIGURATION}",
                Capabilities="CAPABILITY_IAM",
                RoleArn=get_att("CloudFormationRole", "Arn"),
            ),
            {
                "Name": "ApproveChangeSet",
                "ActionTypeId": {"Category": "Approval", "Owner": "AWS", "Provider": "Manual", "Version": "1"},
                "Configuration": {
                    "CustomData": sub(
                        "Review change set " + CHANGE_SET_NAME + " on stack ${InfrastructureStackName}"
                    )
                },
                "RunOrder": 2,
            },
            _cloudformation_action("ExecuteChangeSet", 3, ActionMode="CHANGE_SET_EXECUTE"),
        ],
    }

    resources: Dict[str, Any] = {
        "GitHubConnection": github_connection("infra"),
        "ArtifactBucket": artifact_bucket(),
        "BuildRole": service_role("codebuild", artifact_statements() + [
            build_log_statement(),
            {"Effect": "Allow", "Action": "cloudformation:ValidateTemplate", "Resource": "*"},
            {"Effect": "Allow", "Action": "cloudformation:DescribeStacks", "Resource": stack_arn},
        ]),
        "ValidateProject": codebuild_project(
            "Lints and security-scans infrastructure templates",
            VALIDATE_BUILDSPEC,
            environment_variables=[
                {"Name": "INFRASTRUCTURE_STACK_NAME", "Value": ref("InfrastructureStackName")},
            ],
        ),
        # Assumed by CloudFormation itself while applying the website stack
        "CloudFormationRole": service_role("cloudformation", [
            {
                "Effect": "Allow",
                "Action": [
                    "s3:*", "cloudfront:*", "wafv2:*", "sns:*", "cloudwatch:*", "kms:*",
                ],
                "Resource": "*",
            }
        ]),
        "PipelineRole": service_role("codepipeline", pipeline_role_statements([
            {
                "Effect": "Allow",
                "Action": [
                    "cloudformation:DescribeStacks",
                    "cloudformation:DescribeChangeSet",
                    "cloudformation:CreateChangeSet",
                    "cloudformation:ExecuteChangeSet",
                    "cloudformation:DeleteChangeSet",
                ],
                "Resource": stack_arn,
            },
            {"Effect": "Allow", "Action": "iam:PassRole", "Resource": get_att("CloudFormationRole", "Arn")},
        ])),
        "Pipeline": pipeline("infra-pipeline", [
            source_stage(REPOSITORY_SUFFIX),
            {"Name": "Validate", "Actions": [build_action("LintAndScan", "ValidateProject", VALIDATE_OUTPUT)]},
            deploy_stage,
        ]),
    }

    parameters = pipeline_parameters(REPOSITORY_SUFFIX)
    parameters["InfrastructureStackName"] = parameter(
        "Website stack the pipeline deploys", "devsecops-portfolio-infrastructure"
    )

    return {
        "AWSTemplateFormatVersion": "2010-09-09",
        "Description": "CI/CD pipeline deploying the website infrastructure from GitHub",
        "Parameters": parameters,
        "Resources": resources,
        "Outputs": {
            "InfraRepositoryUrl": output(repository_url(REPOSITORY_SUFFIX), "GitHub repository to create"),
            "GitHubConnectionArn": output(ref("GitHubConnection"), "Connection to authorise in the console"),
            "InfraPipelineName": output(ref("Pipeline"), "Infrastructure pipeline name"),
        },
    }
