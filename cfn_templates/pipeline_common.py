"""
Building blocks shared by the infrastructure and UI pipeline templates.
"""
import json
from typing import Any, Dict, List, Optional

from .intrinsics import encrypted_bucket_properties, get_att, parameter, ref, sub

CODEBUILD_IMAGE = "aws/codebuild/standard:7.0"


def pipeline_parameters(repository_suffix: str) -> Dict[str, Any]:
    return {
        "ProjectName": parameter(
            "Prefix for resource names", "devsecops-portfolio",
            AllowedPattern="^[a-z][a-z0-9-]{1,38}[a-z0-9]$",
        ),
        "GitHubOwner": parameter(
            f"GitHub user or organisation owning the {repository_suffix} repository",
            "your-github-username",
        ),
        "BranchName": parameter("Branch that triggers the pipeline", "main"),
    }


def repository_url(repository_suffix: str) -> Dict[str, Any]:
    return sub(f"https://github.com/${{GitHubOwner}}/${{ProjectName}}-{repository_suffix}")


def github_connection(name_suffix: str) -> Dict[str, Any]:
    """CodeStar connection; stays PENDING until authorised in the console."""
    return {
        "Type": "AWS::CodeStarConnections::Connection",
        "Properties": {
            "ConnectionName": sub(f"${{ProjectName}}-{name_suffix}"),
            "ProviderType": "GitHub",
        },
    }


def artifact_bucket() -> Dict[str, Any]:
    return {
        "Type": "AWS::S3::Bucket",
        "Properties": {
            **encrypted_bucket_properties(),
            "LifecycleConfiguration": {
                "Rules": [{"Id": "ExpireArtifacts", "Status": "Enabled", "ExpirationInDays": 30}]
            },
        },
    }


def service_role(service: str, statements: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    IAM role assumable by an AWS service.

    Roles are left unnamed so the stacks only need CAPABILITY_IAM.
    """
    return {
        "Type": "AWS::IAM::Role",
        "Properties": {
            "AssumeRolePolicyDocument": {
                "Version": "2012-10-17",
                "Statement": [
                    {
                        "Effect": "Allow",
                        "Principal": {"Service": f"{service}.amazonaws.com"},
                        "Action": "sts:AssumeRole",
                    }
                ],
            },
            "Policies": [
                {
                    "PolicyName": f"{service}-access",
                    "PolicyDocument": {"Version": "2012-10-17", "Statement": statements},
                }
            ],
        },
    }


def artifact_statements() -> List[Dict[str, Any]]:
    return [
        {
            "Effect": "Allow",
            "Action": ["s3:GetObject", "s3:GetObjectVersion", "s3:PutObject", "s3:GetBucketLocation"],
            "Resource": [get_att("ArtifactBucket", "Arn"), sub("${ArtifactBucket.Arn}/*")],
        }
    ]


def build_log_statement() -> Dict[str, Any]:
    return {
        "Effect": "Allow",
        "Action": ["logs:CreateLogGroup", "logs:CreateLogStream", "logs:PutLogEvents"],
        "Resource": sub("arn:aws:logs:${AWS::Region}:${AWS::AccountId}:log-group:/aws/codebuild/*"),
    }


def codebuild_project(
    description: str,
    buildspec: Dict[str, Any],
    environment_variables: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """CodeBuild project fed by the pipeline; the buildspec is rendered as JSON."""
    environment: Dict[str, Any] = {
        "Type": "LINUX_CONTAINER",
        "ComputeType": "BUILD_GENERAL1_SMALL",
        "Image": CODEBUILD_IMAGE,
    }
    if environment_variables:
        environment["EnvironmentVariables"] = environment_variables

    return {
        "Type": "AWS::CodeBuild::Project",
        "Properties": {
            "Description": description,
            "ServiceRole": get_att("BuildRole", "Arn"),
            "Source": {"Type": "CODEPIPELINE", "BuildSpec": json.dumps(buildspec, indent=2)},
            "Artifacts": {"Type": "CODEPIPELINE"},
            "Environment": environment,
            "TimeoutInMinutes": 30,
        },
    }


def source_stage(repository_suffix: str) -> Dict[str, Any]:
    return {
        "Name": "Source",
        "Actions": [
            {
                "Name": "GitHub",
                "ActionTypeId": {
                    "Category": "Source",
                    "Owner": "AWS",
                    "Provider": "CodeStarSourceConnection",
                    "Version": "1",
                },
                "Configuration": {
                    "ConnectionArn": ref("GitHubConnection"),
                    "FullRepositoryId": sub(f"${{GitHubOwner}}/${{ProjectName}}-{repository_suffix}"),
                    "BranchName": ref("BranchName"),
                    "OutputArtifactFormat": "CODE_ZIP",
                },
                "OutputArtifacts": [{"Name": "SourceOutput"}],
                "RunOrder": 1,
            }
        ],
    }


def build_action(name: str, project_logical_id: str, output_artifact: Optional[str] = None) -> Dict[str, Any]:
    action = {
        "Name": name,
        "ActionTypeId": {"Category": "Build", "Owner": "AWS", "Provider": "CodeBuild", "Version": "1"},
        "Configuration": {"ProjectName": ref(project_logical_id)},
        "InputArtifacts": [{"Name": "SourceOutput"}],
        "RunOrder": 1,
    }
    if output_artifact:
        action["OutputArtifacts"] = [{"Name": output_artifact}]
    return action


def pipeline(name_suffix: str, stages: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "Type": "AWS::CodePipeline::Pipeline",
        "Properties": {
            "Name": sub(f"${{ProjectName}}-{name_suffix}"),
            "PipelineType": "V2",
            "RoleArn": get_att("PipelineRole", "Arn"),
            "ArtifactStore": {"Type": "S3", "Location": ref("ArtifactBucket")},
            "Stages": stages,
        },
    }


def pipeline_role_statements(extra: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return artifact_statements() + [
        {
            "Effect": "Allow",
            "Action": "codestar-connections:UseConnection",
            "Resource": ref("GitHubConnection"),
        },
        {
            "Effect": "Allow",
            "Action": ["codebuild:StartBuild", "codebuild:BatchGetBuilds"],
            "Resource": "*",
        },
    ] + extra
