"""
Command line entry point: portfolio-deploy.

Deploys the website stack and both CI/CD pipeline stacks, and manages
website releases (publish, promote, rollback, verify).
"""
import argparse
import sys
from pathlib import Path
from typing import List, Optional

import deploy
from cfn_templates import TEMPLATES, build_template, render
from config import Config, get_config
from logger_config import get_logger, set_log_level
from releases import ReleaseManager
from services.cloudformation_service import CloudFormationService
from services.pipeline_service import PipelineService
from utils.decorators import EXIT_FAILURE, EXIT_INVALID, EXIT_OK, cli_command

logger = get_logger(__name__)

PIPELINE_NAME_OUTPUTS = {
    deploy.INFRA_PIPELINE: "InfraPipelineName",
    deploy.UI_PIPELINE: "UIPipelineName",
}


def load_config(args: argparse.Namespace) -> Config:
    """Environment configuration with command line overrides applied."""
    return get_config().with_overrides(
        project_name=args.project_name,
        aws_region=args.region,
        environment=args.environment,
        github_owner=args.github_owner,
        log_level=args.log_level,
    )


def _deploy(args: argparse.Namespace, stack_key: str) -> int:
    config = load_config(args)
    deployment = deploy.get_stack_deployment(config, stack_key)
    print(deployment.banner)
    report = deploy.deploy_stack(
        config,
        stack_key,
        execute=not args.no_execute,
        fail_on_empty=args.fail_on_empty,
    )
    print("\n".join(deploy.format_report(report)))
    return EXIT_OK


@cli_command("Website infrastructure deployment failed!")
def deploy_website(args: argparse.Namespace) -> int:
    return _deploy(args, deploy.WEBSITE)


@cli_command("Infrastructure pipeline deployment failed!")
def deploy_infra_pipeline(args: argparse.Namespace) -> int:
    return _deploy(args, deploy.INFRA_PIPELINE)


@cli_command("UI pipeline deployment failed!")
def deploy_ui_pipeline(args: argparse.Namespace) -> int:
    return _deploy(args, deploy.UI_PIPELINE)


@cli_command()
def outputs(args: argparse.Namespace) -> int:
    config = load_config(args)
    values = deploy.describe_outputs(config, args.stack)
    if not values:
        print(f"Stack {deploy.get_stack_deployment(config, args.stack).stack_name} has no outputs")
        return EXIT_OK
    width = max(len(key) for key in values)
    for key in sorted(values):
        print(f"{key:<{width}}  {values[key]}")
    return EXIT_OK


@cli_command()
def synth(args: argparse.Namespace) -> int:
    body = render(build_template(args.template))
    if args.output:
        path = Path(args.output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body + "\n", encoding="utf-8")
        print(f"📄 Wrote {args.template} template to {path}")
    else:
        print(body)
    return EXIT_OK


@cli_command("Publishing failed!")
def publish(args: argparse.Namespace) -> int:
    manager = ReleaseManager(load_config(args))
    release = manager.publish(
        args.build_dir,
        release_id=args.release_id,
        promote=not args.no_promote,
        source=args.source,
    )
    print(f"📦 Published release {release.release_id} ({release.file_count} files)")
    if args.no_promote:
        print(f"   Promote it with: portfolio-deploy promote {release.release_id}")
    else:
        print(f"🚀 Release {release.release_id} is live")
    return EXIT_OK


@cli_command("Promotion failed!")
def promote(args: argparse.Namespace) -> int:
    manager = ReleaseManager(load_config(args))
    if manager.promote(args.release_id):
        print(f"🚀 Release {args.release_id} is live")
    else:
        print(f"✅ Release {args.release_id} was already live")
    return EXIT_OK


@cli_command("Rollback failed!")
def rollback(args: argparse.Namespace) -> int:
    manager = ReleaseManager(load_config(args))
    target = manager.rollback(to=args.to)
    print(f"⏪ Rolled back to release {target}")
    return EXIT_OK


@cli_command()
def releases(args: argparse.Namespace) -> int:
    manager = ReleaseManager(load_config(args))
    active = manager.active_release_id()
    found = manager.list_releases()
    if not found:
        print("No releases published yet")
        return EXIT_OK
    for release in found:
        marker = "*" if release.release_id == active else " "
        print(
            f"{marker} {release.release_id:<24} {release.deployed_at.isoformat():<32} "
            f"{release.file_count:>5} files  {release.source}"
        )
    return EXIT_OK


@cli_command()
def verify(args: argparse.Namespace) -> int:
    manager = ReleaseManager(load_config(args))
    result = manager.verify(release_id=args.release_id, timeout=args.timeout)
    if result.healthy:
        print(f"✅ {result.url} is healthy (release {result.release_id or 'untagged'})")
        return EXIT_OK
    print(f"❌ {result.url} is unhealthy: {result.error}")
    return EXIT_FAILURE


@cli_command("Could not start the pipeline!")
def start_pipeline(args: argparse.Namespace) -> int:
    config = load_config(args)
    stack_name = deploy.get_stack_deployment(config, args.stack).stack_name
    cfn = CloudFormationService(region=config.aws_region)
    pipeline_name = cfn.get_output(stack_name, PIPELINE_NAME_OUTPUTS[args.stack])
    execution_id = PipelineService(region=config.aws_region).start_execution(pipeline_name)
    print(f"🔄 Started {pipeline_name} (execution {execution_id})")
    return EXIT_OK


@cli_command("Stack deletion failed!")
def destroy(args: argparse.Namespace) -> int:
    config = load_config(args)
    stack_name = deploy.get_stack_deployment(config, args.stack).stack_name
    if not args.yes:
        print(f"Refusing to delete {stack_name} without --yes")
        return EXIT_INVALID
    emptied = deploy.destroy(config, args.stack)
    for bucket in emptied:
        print(f"🧹 Emptied bucket {bucket}")
    print(f"🗑️ Deleted stack {stack_name}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portfolio-deploy",
        description="Deploy the static website stack, its CI/CD pipelines, and website releases",
    )
    parser.add_argument("--project-name", help="Overrides PROJECT_NAME")
    parser.add_argument("--region", help="Overrides AWS_REGION")
    parser.add_argument("--environment", choices=["dev", "staging", "prod"], help="Overrides ENVIRONMENT")
    parser.add_argument("--github-owner", help="Overrides GITHUB_OWNER")
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], help="Overrides LOG_LEVEL"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, handler, help_text in (
        ("deploy-website", deploy_website, "Deploy the S3 + CloudFront + WAF stack"),
        ("deploy-infra-pipeline", deploy_infra_pipeline, "Deploy the infrastructure CI/CD pipeline"),
        ("deploy-ui-pipeline", deploy_ui_pipeline, "Deploy the UI CI/CD pipeline"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument(
            "--no-execute", action="store_true", help="Create the change set for review without executing it"
        )
        command.add_argument(
            "--fail-on-empty", action="store_true", help="Fail when there is nothing to change"
        )
        command.set_defaults(handler=handler)

    command = subparsers.add_parser("outputs", help="Print the outputs of a stack")
    command.add_argument("stack", choices=deploy.STACK_KEYS)
    command.set_defaults(handler=outputs)

    command = subparsers.add_parser("synth", help="Render a CloudFormation template as JSON")
    command.add_argument("template", choices=sorted(TEMPLATES))
    command.add_argument("--output", help="File to write instead of stdout")
    command.set_defaults(handler=synth)

    command = subparsers.add_parser("publish", help="Upload a build as a new release")
    command.add_argument("build_dir")
    command.add_argument("--release-id", help="Defaults to the current UTC timestamp")
    command.add_argument("--no-promote", action="store_true", help="Upload without switching traffic")
    command.add_argument("--source", default="local", help="Origin recorded in the release manifest")
    command.set_defaults(handler=publish)

    command = subparsers.add_parser("promote", help="Serve an existing release")
    command.add_argument("release_id")
    command.set_defaults(handler=promote)

    command = subparsers.add_parser("rollback", help="Serve the previous (or a given) release")
    command.add_argument("--to", help="Release to roll back to")
    command.set_defaults(handler=rollback)

    command = subparsers.add_parser("releases", help="List published releases")
    command.set_defaults(handler=releases)

    command = subparsers.add_parser("verify", help="Check that the website answers")
    command.add_argument("--release-id", help="Also require this release to be served")
    command.add_argument("--timeout", type=int, default=10)
    command.set_defaults(handler=verify)

    command = subparsers.add_parser("start-pipeline", help="Start a pipeline run")
    command.add_argument("stack", choices=sorted(PIPELINE_NAME_OUTPUTS))
    command.set_defaults(handler=start_pipeline)

    command = subparsers.add_parser("destroy", help="Empty the stack's buckets and delete it")
    command.add_argument("stack", choices=deploy.STACK_KEYS)
    command.add_argument("--yes", action="store_true", help="Confirm the deletion")
    command.set_defaults(handler=destroy)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.log_level:
        set_log_level(args.log_level)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
