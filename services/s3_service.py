"""
S3 service for website content and release manifests.
"""
import json
import mimetypes
from pathlib import Path
from typing import Dict, Any, Optional, List

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError
from more_itertools import chunked

from logger_config import get_logger
from utils.exceptions import S3OperationError

logger = get_logger(__name__)

# DeleteObjects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000

HTML_CACHE_CONTROL = 'no-cache'
ASSET_CACHE_CONTROL = 'public, max-age=31536000, immutable'


class S3Service:
    """Service for S3 operations."""

    def __init__(self, bucket_name: str, region: Optional[str] = None):
        """
        Initialize S3 service.

        Args:
            bucket_name: Name of the S3 bucket
            region: Region for the client (None uses the default chain)
        """
        self.bucket_name = bucket_name
        self.region = region
        self._s3_client = None

    @property
    def s3_client(self):
        """Lazy initialization of S3 client."""
        if self._s3_client is None:
            self._s3_client = boto3.client('s3', region_name=self.region)
        return self._s3_client

    def object_exists(self, key: str) -> bool:
        """
        Check if an object exists in the bucket.

        Args:
            key: S3 object key

        Returns:
            True if object exists, False otherwise
        """
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code in ('404', 'NoSuchKey'):
                return False
            logger.warning(f'S3 head_object failed for key {key}: {str(e)}')
            return False

    def put_json_object(self, key: str, data: Dict[str, Any]) -> None:
        """
        Put a JSON object into S3 bucket.

        Raises:
            S3OperationError: If S3 operation fails
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=json.dumps(data, indent=2).encode('UTF-8'),
                ContentType='application/json',
                CacheControl=HTML_CACHE_CONTROL,
            )
        except ClientError as e:
            raise S3OperationError(
                f'Failed to write s3://{self.bucket_name}/{key}: {e}',
                bucket=self.bucket_name, key=key, operation='put_object'
            ) from e
        logger.info(f'Successfully put object to s3://{self.bucket_name}/{key}')

    def get_json_object(self, key: str) -> Dict[str, Any]:
        """
        Read and decode a JSON object.

        Raises:
            S3OperationError: If the object is missing or not valid JSON
        """
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return json.loads(response['Body'].read())
        except ClientError as e:
            raise S3OperationError(
                f'Failed to read s3://{self.bucket_name}/{key}: {e}',
                bucket=self.bucket_name, key=key, operation='get_object'
            ) from e
        except ValueError as e:
            raise S3OperationError(
                f's3://{self.bucket_name}/{key} is not valid JSON: {e}',
                bucket=self.bucket_name, key=key, operation='get_object'
            ) from e

    def put_text_object(
        self,
        key: str,
        body: str,
        content_type: str = 'text/html',
        cache_control: str = HTML_CACHE_CONTROL
    ) -> None:
        """
        Put a text object, replacing any existing one.

        Raises:
            S3OperationError: If S3 operation fails
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=body.encode('UTF-8'),
                ContentType=f'{content_type}; charset=utf-8',
                CacheControl=cache_control,
            )
        except ClientError as e:
            raise S3OperationError(
                f'Failed to write s3://{self.bucket_name}/{key}: {e}',
                bucket=self.bucket_name, key=key, operation='put_object'
            ) from e

    def upload_directory(self, local_dir: str, prefix: str = '') -> int:
        """
        Upload every file under local_dir, keeping relative paths.

        HTML is served with no-cache so new releases show up right after
        an invalidation; every other file gets a long immutable cache.

        Args:
            local_dir: Directory to upload (usually a build output)
            prefix: Key prefix, e.g. 'releases/20240101T000000Z'

        Returns:
            Number of files uploaded

        Raises:
            S3OperationError: If the directory is missing or empty, or an upload fails
        """
        root = Path(local_dir)
        if not root.is_dir():
            raise S3OperationError(
                f'Directory {local_dir} does not exist',
                bucket=self.bucket_name, operation='upload_directory'
            )

        files = sorted(p for p in root.rglob('*') if p.is_file())
        if not files:
            raise S3OperationError(
                f'Directory {local_dir} contains no files',
                bucket=self.bucket_name, operation='upload_directory'
            )

        prefix = prefix.strip('/')
        logger.info(f'Uploading {len(files)} files to s3://{self.bucket_name}/{prefix}')
        for file_path in files:
            relative_key = file_path.relative_to(root).as_posix()
            key = f'{prefix}/{relative_key}' if prefix else relative_key

            content_type, _ = mimetypes.guess_type(file_path.name)
            extra_args = {
                'ContentType': content_type or 'application/octet-stream',
                'CacheControl': (
                    HTML_CACHE_CONTROL if file_path.suffix in ('.html', '.htm')
                    else ASSET_CACHE_CONTROL
                ),
            }

            try:
                self.s3_client.upload_file(
                    str(file_path), self.bucket_name, key, ExtraArgs=extra_args
                )
            except (ClientError, S3UploadFailedError) as e:
                raise S3OperationError(
                    f'Failed to upload {file_path}: {e}',
                    bucket=self.bucket_name, key=key, operation='upload_file'
                ) from e
            logger.debug(f'Uploaded {relative_key} ({extra_args["ContentType"]})')

        return len(files)

    def list_prefixes(self, prefix: str = '') -> List[str]:
        """
        List the immediate "directories" under a prefix.

        Returns:
            Child prefixes without the parent part or trailing slash,
            e.g. ['20240101T000000Z'] for prefix 'releases/'
        """
        if prefix and not prefix.endswith('/'):
            prefix += '/'

        names = []
        paginator = self.s3_client.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix, Delimiter='/'):
            for common_prefix in page.get('CommonPrefixes', []):
                names.append(common_prefix['Prefix'][len(prefix):].rstrip('/'))
        return names

    def empty_bucket(self) -> int:
        """
        Delete every object version and delete marker in the bucket.

        A versioned bucket must be completely empty before CloudFormation can
        delete it.

        Returns:
            Number of versions and markers deleted
        """
        identifiers = []
        paginator = self.s3_client.get_paginator('list_object_versions')
        for page in paginator.paginate(Bucket=self.bucket_name):
            for entry in page.get('Versions', []) + page.get('DeleteMarkers', []):
                identifiers.append({'Key': entry['Key'], 'VersionId': entry['VersionId']})

        deleted = 0
        for batch in chunked(identifiers, DELETE_BATCH_SIZE):
            response = self.s3_client.delete_objects(
                Bucket=self.bucket_name,
                Delete={'Objects': batch, 'Quiet': True}
            )
            errors = response.get('Errors', [])
            if errors:
                first = errors[0]
                raise S3OperationError(
                    f"Failed to delete {len(errors)} objects, first: {first.get('Key')} "
                    f"({first.get('Message')})",
                    bucket=self.bucket_name, key=first.get('Key'), operation='delete_objects'
                )
            deleted += len(batch)

        logger.info(f'Deleted {deleted} object versions from s3://{self.bucket_name}')
        return deleted
