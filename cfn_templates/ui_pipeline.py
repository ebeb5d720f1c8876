"""
CI/CD pipeline for the portfolio UI repository.

Each build is uploaded as a new release directory, then promoted by
pointing the website stack's ActiveReleasePath at it. Older releases stay
in the bucket, which is what makes rollback possible.
"""
from typing import Any, Dict, List

from .intrinsics import export_name, import_value, output, parameter, ref, sub
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
from .website import (
    MANIFEST_NAME,
    RELEASE_META_NAME,
    RELEASES_PREFIX,
    WEBSITE_PARAMETERS,
)

REPOSITORY_SUFFIX = "ui"
BUILD_OUTPUT_DIR = "build"


def _promotion_parameters() -> str:
    """--parameters value switching ActiveReleasePath and keeping everything else."""
    values = []
    for name in WEBSITE_PARAMETERS:
        if name == "ActiveReleasePath":
            values.append(f"ParameterKey={name},ParameterValue=/{RELEASES_PREFIX}/$RELEASE_ID")
        else:
            values.append(f"ParameterKey={name},UsePreviousValue=true")
    return " ".join(values)


def build_commands() -> List[str]:
    release_dir = f"s3://$WEBSITE_BUCKET/{RELEASES_PREFIX}/$RELEASE_ID"
    meta_tag = f'<meta name=\\"{RELEASE_META_NAME}\\" content=\\"$RELEASE_ID\\">'
    return [
        f'sed -i "s|</head>|{meta_tag}</head>|" {BUILD_OUTPUT_DIR}/index.html',
        f'aws s3 sync {BUILD_OUTPUT_DIR}/ "{release_dir}/" --exclude "*.html" '
        '--cache-control "public, max-age=31536000, immutable"',
        f'aws s3 sync {BUILD_OUTPUT_DIR}/ "{release_dir}/" --exclude "*" --include "*.html" '
        '--cache-control "no-cache"',
        f'FILE_COUNT=$(find {BUILD_OUTPUT_DIR} -type f | wc -l)',
        'DEPLOYED_AT=$(date -u +%Y-%m-%dT%H:%M:%SZ)',
        'printf \'{"release_id": "%s", "deployed_at": "%s", "source": "%s", "file_count": %s}\' '
        '"$RELEASE_ID" "$DEPLOYED_AT" "$CODEBUILD_RESOLVED_SOURCE_VERSION" "$FILE_COUNT" '
        f'| aws s3 cp - "{release_dir}/{MANIFEST_NAME}" --content-type application/json',
    ]


def promote_commands() -> List[str]:
    return [
        'aws cloudformation update-stack --stack-name "$INFRASTRUCTURE_STACK_NAME" '
        f'--use-previous-template --capabilities CAPABILITY_IAM --parameters {_promotion_parameters()}',
        'aws cloudformation wait stack-update-complete --stack-name "$INFRASTRUCTURE_STACK_NAME"',
        'aws cloudfront create-invalidation --distribution-id "$DISTRIBUTION_ID" --paths "/*"',
    ]


def build_buildspec() -> Dict[str, Any]:
    return {
        "version": 0.2,
        "phases": {
            "install": {"runtime-versions": {"nodejs": "20"}},
            "pre_build": {
                "commands": [
                    "npm ci",
                    "npm audit --audit-level=high",
                    "RELEASE_ID=$(echo $CODEBUILD_RESOLVED_SOURCE_VERSION | cut -c1-12)",
                ]
            },
            # post_build still runs after a failed build unless the build aborts
            "build": {"on-failure": "ABORT", "commands": ["npm run build"] + build_commands()},
            "post_build": {"commands": promote_commands()},
        },
    }


def build_ui_pipeline_template() -> Dict[str, Any]:
    """Build the UI pipeline template."""
    bucket_name = import_value(export_name(ref("InfrastructureStackName"), "WebsiteBucketName"))
    distribution_id = import_value(export_name(ref("InfrastructureStackName"), "CloudFrontDistributionId"))
    logging_bucket_name = import_value(export_name(ref("InfrastructureStackName"), "LoggingBucketName"))
    web_acl_arn = import_value(export_name(ref("InfrastructureStackName"), "WebACLArn"))

    build_statements = artifact_statements() + [
        build_log_statement(),
        {
            "Effect": "Allow",
            "Action": ["s3:ListBucket"],
            "Resource": sub("arn:aws:s3:::${Bucket}", Bucket=bucket_name),
        },
        {
            "Effect": "Allow",
            "Action": ["s3:GetObject", "s3:PutObject", "s3:DeleteObject"],
            "Resource": sub(f"arn:aws:s3:::${{Bucket}}/{RELEASES_PREFIX}/*", Bucket=bucket_name),
        },
        {
            "Effect": "Allow",
            "Action": [
                "cloudfront:CreateInvalidation",
                "cloudfront:GetDistribution",
                "cloudfront:GetDistributionConfig",
                "cloudfront:UpdateDistribution",
                "cloudfront:ListTagsForResource",
                "cloudfront:TagResource",
                "cloudfront:UntagResource",
            ],
            "Resource": sub(
                "arn:aws:cloudfront::${AWS::AccountId}:distribution/${DistributionId}",
                DistributionId=distribution_id,
            ),
        },
        # update-stack runs as this role, and a distribution update re-applies
        # its standard logging ACL and web ACL association
        {
            "Effect": "Allow",
            "Action": ["s3:GetBucketAcl", "s3:PutBucketAcl"],
            "Resource": sub("arn:aws:s3:::${Bucket}", Bucket=logging_bucket_name),
        },
        {"Effect": "Allow", "Action": "wafv2:GetWebACL", "Resource": web_acl_arn},
        {
            "Effect": "Allow",
            "Action": ["cloudformation:UpdateStack", "cloudformation:DescribeStacks"],
            "Resource": sub(
                "arn:aws:cloudformation:${AWS::Region}:${AWS::AccountId}:stack/${InfrastructureStackName}/*"
            ),
        },
    ]

    parameters = pipeline_parameters(REPOSITORY_SUFFIX)
    parameters["InfrastructureStackName"] = parameter(
        "Website stack whose exports and release path the pipeline uses",
        "devsecops-portfolio-infrastructure",
    )

    resources: Dict[str, Any] = {
        "GitHubConnection": github_connection("ui"),
        "ArtifactBucket": artifact_bucket(),
        "BuildRole": service_role("codebuild", build_statements),
        "BuildProject": codebuild_project(
            "Builds, audits and releases the portfolio UI",
            build_buildspec(),
            environment_variables=[
                {"Name": "WEBSITE_BUCKET", "Value": bucket_name},
                {"Name": "DISTRIBUTION_ID", "Value": distribution_id},
                {"Name": "INFRASTRUCTURE_STACK_NAME", "Value": ref("InfrastructureStackName")},
            ],
        ),
        "PipelineRole": service_role("codepipeline", pipeline_role_statements([])),
        "Pipeline": pipeline("ui-pipeline", [
            source_stage(REPOSITORY_SUFFIX),
            {"Name": "BuildAndRelease", "Actions": [build_action("BuildAndRelease", "BuildProject")]},
        ]),
    }

    return {
        "AWSTemplateFormatVersion": "2010-09-09",
        "Description": "CI/CD pipeline building the portfolio UI and releasing it to the website stack",
        "Parameters": parameters,
        "Resources": resources,
        "Outputs": {
            "UIRepositoryUrl": output(repository_url(REPOSITORY_SUFFIX), "GitHub repository to create"),
            "GitHubConnectionArn": output(ref("GitHubConnection"), "Connection to authorise in the console"),
            "UIPipelineName": output(ref("Pipeline"), "UI pipeline name"),
            "BuildProjectName": output(ref("BuildProject"), "CodeBuild project releasing the UI"),
        },
    }
