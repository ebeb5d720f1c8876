"""
Blue/green releases of the website content.

Every build is uploaded to its own releases/<release_id>/ directory in the
website bucket, next to a release.json manifest. CloudFront serves exactly
one of those directories, the one named by the website stack's
ActiveReleasePath parameter. Promoting a release updates that parameter;
rolling back promotes an older release again.
"""
import datetime as dt
import re
from dataclasses import dataclass
from datetime import timezone
from pathlib import Path
from typing import List, Optional

from bs4 import BeautifulSoup
from dateutil.parser import parse

from cfn_templates.website import MANIFEST_NAME, RELEASE_META_NAME, RELEASES_PREFIX
from config import Config
from logger_config import get_logger
from services.cloudformation_service import CloudFormationService
from services.cloudfront_service import CloudFrontService
from services.s3_service import S3Service
from services.site_health_service import HealthResult, SiteHealthService
from utils.exceptions import ReleaseError, S3OperationError, ValidationError

logger = get_logger(__name__)

RELEASE_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
RELEASE_ID_FORMAT = "%Y%m%dT%H%M%SZ"


@dataclass
class Release:
    """A release directory described by its manifest."""

    release_id: str
    deployed_at: dt.datetime
    source: str = ""
    file_count: int = 0

    @property
    def path(self) -> str:
        return release_path(self.release_id)

    @classmethod
    def from_manifest(cls, manifest: dict) -> "Release":
        """
        Build a Release from a release.json document.

        Raises:
            KeyError: If release_id or deployed_at is missing
            ValueError: If deployed_at is not a date
        """
        deployed_at = parse(manifest["deployed_at"])
        if deployed_at.tzinfo is None:
            deployed_at = deployed_at.replace(tzinfo=timezone.utc)
        return cls(
            release_id=manifest["release_id"],
            deployed_at=deployed_at,
            source=manifest.get("source", ""),
            file_count=int(manifest.get("file_count", 0)),
        )

    def to_manifest(self) -> dict:
        return {
            "release_id": self.release_id,
            "deployed_at": self.deployed_at.isoformat(),
            "source": self.source,
            "file_count": self.file_count,
        }


def release_path(release_id: str) -> str:
    return f"/{RELEASES_PREFIX}/{release_id}"


def manifest_key(release_id: str) -> str:
    return f"{RELEASES_PREFIX}/{release_id}/{MANIFEST_NAME}"


def generate_release_id(now: Optional[dt.datetime] = None) -> str:
    now = now or dt.datetime.now(timezone.utc)
    return now.strftime(RELEASE_ID_FORMAT)


def validate_release_id(release_id: str) -> None:
    """
    Release ids become S3 prefixes and CloudFront origin paths.

    Raises:
        ValidationError: If the id contains anything but letters, digits, '.', '_' or '-'
    """
    if not release_id or not RELEASE_ID_PATTERN.match(release_id):
        raise ValidationError(
            f"Release id {release_id!r} may only contain letters, digits, '.', '_' and '-'",
            field="release_id",
            value=release_id,
        )


def stamp_release(html: str, release_id: str) -> str:
    """Add or update <meta name="release"> so health checks can tell releases apart."""
    soup = BeautifulSoup(html, "html.parser")
    tag = soup.find("meta", attrs={"name": RELEASE_META_NAME})
    if tag is None:
        tag = soup.new_tag("meta", attrs={"name": RELEASE_META_NAME, "content": release_id})
        if soup.head is not None:
            soup.head.append(tag)
        else:
            soup.insert(0, tag)
    else:
        tag["content"] = release_id
    return str(soup)


class ReleaseManager:
    """Publishes, promotes and rolls back website releases."""

    def __init__(
        self,
        config: Config,
        cfn: Optional[CloudFormationService] = None,
        s3: Optional[S3Service] = None,
        cloudfront: Optional[CloudFrontService] = None,
    ) -> None:
        self.config = config
        self.stack_name = config.infrastructure_stack_name
        self.cfn = cfn or CloudFormationService(
            region=config.aws_region,
            wait_delay=config.stack_wait_delay,
            wait_max_attempts=config.stack_wait_max_attempts,
        )
        self.cloudfront = cloudfront or CloudFrontService()
        self._s3 = s3

    @property
    def s3(self) -> S3Service:
        """Website bucket service, located through the stack outputs."""
        if self._s3 is None:
            bucket_name = self.cfn.get_output(self.stack_name, "WebsiteBucketName")
            self._s3 = S3Service(bucket_name, region=self.config.aws_region)
        return self._s3

    def active_release_id(self) -> str:
        """The release currently served, read from the stack every time."""
        path = self.cfn.get_output(self.stack_name, "ActiveReleasePath")
        return path.rstrip("/").rsplit("/", 1)[-1]

    def list_releases(self) -> List[Release]:
        """
        List releases with a readable manifest, oldest first.

        Directories without a valid manifest (interrupted uploads) are skipped.
        """
        releases = []
        for release_id in self.s3.list_prefixes(RELEASES_PREFIX):
            try:
                manifest = self.s3.get_json_object(manifest_key(release_id))
                releases.append(Release.from_manifest(manifest))
            except (S3OperationError, KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping release {release_id}: unreadable manifest ({e})")
        return sorted(releases, key=lambda release: (release.deployed_at, release.release_id))

    def get_release(self, release_id: str) -> Release:
        """
        Raises:
            ReleaseError: If the release has no manifest
        """
        key = manifest_key(release_id)
        if not self.s3.object_exists(key):
            raise ReleaseError(f"Release {release_id} does not exist", release_id=release_id)
        try:
            return Release.from_manifest(self.s3.get_json_object(key))
        except (KeyError, ValueError, TypeError) as e:
            raise ReleaseError(
                f"Release {release_id} has an invalid manifest: {e}", release_id=release_id
            ) from e

    def publish(
        self,
        build_dir: str,
        release_id: Optional[str] = None,
        promote: bool = True,
        source: str = "local",
    ) -> Release:
        """
        Upload a build as a new release and optionally make it live.

        Args:
            build_dir: Directory with the built site (index.html at the root)
            release_id: Defaults to the current UTC time, e.g. 20240101T120000Z
            promote: Switch traffic to the new release after uploading
            source: Free-form origin recorded in the manifest (commit, 'local')

        Raises:
            ValidationError: If the release id is not usable as a path
            ReleaseError: If the release id is already taken
            S3OperationError: If the upload fails
        """
        release_id = release_id or generate_release_id()
        validate_release_id(release_id)

        if self.s3.object_exists(manifest_key(release_id)):
            raise ReleaseError(f"Release {release_id} already exists", release_id=release_id)

        prefix = f"{RELEASES_PREFIX}/{release_id}"
        file_count = self.s3.upload_directory(build_dir, prefix)

        index_path = Path(build_dir) / "index.html"
        if index_path.is_file():
            stamped = stamp_release(index_path.read_text(encoding="utf-8"), release_id)
            self.s3.put_text_object(f"{prefix}/index.html", stamped)
        else:
            logger.warning(f"{build_dir} has no index.html, release {release_id} cannot be verified")

        # Written last: a manifest means the upload finished
        release = Release(
            release_id=release_id,
            deployed_at=dt.datetime.now(timezone.utc),
            source=source,
            file_count=file_count,
        )
        self.s3.put_json_object(manifest_key(release_id), release.to_manifest())
        logger.info(f"Published release {release_id} ({file_count} files)")

        if promote:
            self.promote(release_id)
        return release

    def promote(self, release_id: str) -> bool:
        """
        Serve the given release.

        Returns:
            False if the release was already live, True otherwise

        Raises:
            ReleaseError: If the release does not exist
            DeploymentError: If the stack update fails
        """
        validate_release_id(release_id)
        self.get_release(release_id)

        active = self.active_release_id()
        if active == release_id:
            logger.info(f"Release {release_id} is already live")
            return False

        logger.info(f"Switching {self.stack_name} from release {active} to {release_id}")
        self.cfn.deploy(
            self.stack_name,
            parameters={"ActiveReleasePath": release_path(release_id)},
            capabilities=(),
            use_previous_template=True,
        )

        distribution_id = self.cfn.get_output(self.stack_name, "CloudFrontDistributionId")
        self.cloudfront.create_invalidation(distribution_id, ["/*"])
        return True

    def rollback(self, to: Optional[str] = None) -> str:
        """
        Go back to an earlier release.

        Args:
            to: Release to serve; defaults to the one published just before
                the active release

        Returns:
            The release id now being served

        Raises:
            ReleaseError: If there is no release to go back to
        """
        active = self.active_release_id()

        if to is not None:
            if to == active:
                raise ReleaseError(f"Release {to} is already live", release_id=to)
            target = to
        else:
            release_ids = [release.release_id for release in self.list_releases()]
            if active not in release_ids:
                raise ReleaseError(
                    f"Active release {active} has no manifest, pass an explicit release to roll back to",
                    release_id=active,
                )
            position = release_ids.index(active)
            if position == 0:
                raise ReleaseError(
                    f"Release {active} is the oldest release, there is nothing to roll back to",
                    release_id=active,
                )
            target = release_ids[position - 1]

        logger.info(f"Rolling back from {active} to {target}")
        self.promote(target)
        return target

    def verify(self, release_id: Optional[str] = None, timeout: int = 10) -> HealthResult:
        """Check that the site answers, and serves release_id when given."""
        url = self.cfn.get_output(self.stack_name, "WebsiteUrl")
        return SiteHealthService(url, timeout=timeout).check(expected_release=release_id)
