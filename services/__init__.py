"""
Service layer for AWS operations and HTTP health checks.

Each service wraps one boto3 client (or requests), logs what it does and
raises the exceptions from utils.exceptions, keeping the deployment logic
free of API details.
"""
