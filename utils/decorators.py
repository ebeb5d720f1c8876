"""
Command decorators for error handling, logging, and exit codes.
"""
import functools
import uuid
import traceback
from typing import Callable, Any, Optional
from botocore.exceptions import BotoCoreError, ClientError
from logger_config import get_logger
from utils.exceptions import DeploymentError, ValidationError

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID = 2


def troubleshooting_lines(error: DeploymentError) -> list[str]:
    """Build the troubleshooting block printed after a failed deployment."""
    lines = []
    if error.stack_name:
        lines.append(f"   Stack: {error.stack_name}")
    if error.status:
        lines.append(f"   Status: {error.status}")
    for reason in error.reasons:
        lines.append(f"   - {reason}")
    lines.append("")
    lines.append("🔍 Troubleshooting:")
    if error.stack_name:
        lines.append(
            f"   aws cloudformation describe-stack-events --stack-name {error.stack_name}"
        )
    lines.append("   Check that your credentials allow CloudFormation, IAM, S3, CloudFront and WAF")
    lines.append("   Stacks in ROLLBACK_COMPLETE must be deleted before they can be redeployed")
    return lines


def cli_command(
    failure_message: Optional[str] = None
) -> Callable[[Callable[..., int]], Callable[..., int]]:
    """
    Decorator for CLI command functions.

    Provides:
    - Correlation IDs for logging
    - Mapping of errors to process exit codes
    - The fixed failure message printed after a failed deployment

    Args:
        failure_message: Line printed when the command fails with a
            DeploymentError (defaults to "<command> failed!")

    Returns:
        Decorator producing a function that always returns an exit code
    """
    def decorator(func: Callable[..., int]) -> Callable[..., int]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            correlation_id = str(uuid.uuid4())
            command = func.__name__

            logger.debug(
                f"Command {command} invoked",
                extra={"correlation_id": correlation_id, "command": command}
            )

            try:
                result = func(*args, **kwargs)
                exit_code = EXIT_OK if result is None else int(result)
                logger.debug(
                    f"Command {command} finished with exit code {exit_code}",
                    extra={"correlation_id": correlation_id}
                )
                return exit_code

            except (ValueError, ValidationError) as e:
                logger.warning(
                    f"Command {command} validation error: {str(e)}",
                    extra={"correlation_id": correlation_id}
                )
                print(f"❌ Invalid configuration: {e}")
                return EXIT_INVALID

            except DeploymentError as e:
                logger.error(
                    f"Command {command} deployment failed: {e.message}",
                    extra={"correlation_id": correlation_id, "stack_name": e.stack_name}
                )
                print(f"❌ {failure_message or command.replace('_', ' ').capitalize() + ' failed!'}")
                print(f"   {e.message}")
                for line in troubleshooting_lines(e):
                    print(line)
                return EXIT_FAILURE

            except (ClientError, BotoCoreError) as e:
                logger.error(
                    f"Command {command} AWS error: {str(e)}",
                    extra={"correlation_id": correlation_id},
                    exc_info=True
                )
                print(f"❌ AWS request failed: {e}")
                return EXIT_FAILURE

            except Exception as e:
                error_traceback = traceback.format_exc()
                logger.error(
                    f"Command {command} failed: {str(e)}",
                    extra={
                        "correlation_id": correlation_id,
                        "traceback": error_traceback
                    },
                    exc_info=True
                )
                print(f"❌ {type(e).__name__}: {e}")
                return EXIT_FAILURE

        return wrapper

    return decorator
