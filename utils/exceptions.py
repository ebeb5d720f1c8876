"""
Custom exception classes for deployment commands and services.
"""
from typing import Optional, List, Any


class DeploymentError(Exception):
    """Exception raised when a CloudFormation deployment does not succeed."""

    def __init__(
        self,
        message: str,
        stack_name: Optional[str] = None,
        status: Optional[str] = None,
        reasons: Optional[List[str]] = None
    ):
        """
        Initialize deployment error.

        Args:
            message: Error message
            stack_name: Stack being deployed if available
            status: Last observed stack or change set status if available
            reasons: Failure reasons reported by CloudFormation events
        """
        super().__init__(message)
        self.message = message
        self.stack_name = stack_name
        self.status = status
        self.reasons = reasons or []


class StackOutputError(Exception):
    """Exception raised when an expected stack output is missing."""

    def __init__(
        self,
        message: str,
        stack_name: Optional[str] = None,
        output_key: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.stack_name = stack_name
        self.output_key = output_key


class S3OperationError(Exception):
    """Exception raised for S3 operation errors."""

    def __init__(
        self,
        message: str,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
        operation: Optional[str] = None
    ):
        """
        Initialize S3 operation error.

        Args:
            message: Error message
            bucket: S3 bucket name if available
            key: S3 object key if available
            operation: Operation name if available
        """
        super().__init__(message)
        self.message = message
        self.bucket = bucket
        self.key = key
        self.operation = operation


class CloudFrontError(Exception):
    """Exception raised for CloudFront operation errors."""

    def __init__(
        self,
        message: str,
        distribution_id: Optional[str] = None,
        operation: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.distribution_id = distribution_id
        self.operation = operation


class ReleaseError(Exception):
    """Exception raised when publishing, promoting or rolling back a release fails."""

    def __init__(
        self,
        message: str,
        release_id: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.release_id = release_id


class ValidationError(Exception):
    """Exception raised for validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None
    ):
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Field name that failed validation if available
            value: Invalid value if available
        """
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value
