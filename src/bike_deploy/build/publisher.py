"""
Image publisher.

Builds the service image from the source tree's own Dockerfile and pushes it
to ECR under the release revision, so the tag is immutable and the same
revision always maps to the same tag.
"""
import base64
import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from botocore.exceptions import ClientError

from bike_deploy.build.test_gate import TestReport
from bike_deploy.errors import BuildFailure, RegistryAuthError, TestGateFailure
from bike_deploy.models import ArtifactReference
from bike_deploy.utils.aws_clients import get_ecr_client
from bike_deploy.utils.commands import CommandRunner
from bike_deploy.utils.decorators import log_operation

logger = logging.getLogger(__name__)

# Never part of the content hash
IGNORED_DIRS = {'.git', 'node_modules', 'uploads', 'logs', '__pycache__'}


def content_hash(source_tree: str, length: int = 12) -> str:
    """Deterministic hash of the file paths and bytes under a source tree."""
    digest = hashlib.sha256()
    root = Path(source_tree)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS)
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            digest.update(path.relative_to(root).as_posix().encode('utf-8'))
            digest.update(b'\0')
            digest.update(path.read_bytes())
    return digest.hexdigest()[:length]


class ImagePublisher:
    """Builds, tags and pushes one release image."""

    def __init__(self, repository_uri: str, ecr_client=None, runner: Optional[CommandRunner] = None,
                 dockerfile: str = "Dockerfile", skip_existing: bool = True):
        self.repository_uri = repository_uri
        self.repository_name = repository_uri.split('/', 1)[-1]
        self.ecr = ecr_client or get_ecr_client()
        self.runner = runner or CommandRunner()
        self.dockerfile = dockerfile
        self.skip_existing = skip_existing

    def resolve_revision(self, source_tree: str, revision: Optional[str] = None) -> str:
        """Explicit revision, else the git commit, else a content hash."""
        if revision:
            return revision
        result = self.runner.run(["git", "rev-parse", "HEAD"], cwd=source_tree)
        if result.ok and result.stdout.strip():
            return result.stdout.strip()
        logger.info("Source tree is not a git checkout, tagging by content hash")
        return content_hash(source_tree)

    @log_operation("Image publish", logger_name=__name__)
    def publish(self, source_tree: str, test_report: Optional[TestReport] = None,
                revision: Optional[str] = None) -> ArtifactReference:
        """Build and push the image for a tested release.

        Raises:
            TestGateFailure: no passing test report was supplied
            RegistryAuthError: the registry login handshake failed
            BuildFailure: docker build or push exited non-zero
        """
        if test_report is None or not test_report.passed:
            raise TestGateFailure("Refusing to publish a release without a passing test run")

        tag = self.resolve_revision(source_tree, revision)
        artifact = ArtifactReference(registry_uri=self.repository_uri, tag=tag)
        logger.info(f"📦 Publishing {artifact.image_uri}")

        self.login()

        if self.skip_existing:
            existing_digest = self.remote_digest(tag)
            if existing_digest:
                logger.info(f"✅ Tag {tag} already in registry, skipping build")
                return ArtifactReference(registry_uri=self.repository_uri, tag=tag, digest=existing_digest)

        build = self.runner.run(
            ["docker", "build", "-t", artifact.image_uri, "-f", self.dockerfile, "."],
            cwd=source_tree,
        )
        if not build.ok:
            raise BuildFailure(f"docker build exited {build.exit_status}: {build.stderr.strip()[-500:]}")

        push = self.runner.run(["docker", "push", artifact.image_uri])
        if not push.ok:
            raise BuildFailure(f"docker push exited {push.exit_status}: {push.stderr.strip()[-500:]}")

        digest = self.local_digest(artifact.image_uri) or self.remote_digest(tag)
        logger.info(f"✅ Pushed image to ECR: {artifact.image_uri}")
        return ArtifactReference(registry_uri=self.repository_uri, tag=tag, digest=digest)

    def login(self) -> None:
        """ECR token handshake followed by docker login."""
        try:
            token_data = self.ecr.get_authorization_token()['authorizationData'][0]
            token = base64.b64decode(token_data['authorizationToken']).decode('utf-8')
            username, password = token.split(':', 1)
        except (ClientError, KeyError, IndexError, ValueError) as e:
            raise RegistryAuthError(f"Could not obtain registry token: {e}") from e

        if password not in self.runner.secrets:
            self.runner.secrets.append(password)
        result = self.runner.run(
            ["docker", "login", "--username", username, "--password-stdin",
             token_data['proxyEndpoint']],
            input_text=password,
        )
        if not result.ok:
            raise RegistryAuthError(f"docker login exited {result.exit_status}: {result.stderr.strip()}")
        logger.info("🔐 Logged in to ECR")

    def remote_digest(self, tag: str) -> Optional[str]:
        try:
            response = self.ecr.describe_images(
                repositoryName=self.repository_name,
                imageIds=[{'imageTag': tag}]
            )
        except ClientError as e:
            if e.response['Error']['Code'] in ('ImageNotFoundException', 'RepositoryNotFoundException'):
                return None
            raise BuildFailure(f"Could not query registry for tag {tag}: {e}") from e
        images = response.get('imageDetails', [])
        return images[0].get('imageDigest') if images else None

    def local_digest(self, image_uri: str) -> Optional[str]:
        result = self.runner.run(
            ["docker", "inspect", "--format", "{{index .RepoDigests 0}}", image_uri]
        )
        if not result.ok or '@' not in result.stdout:
            return None
        return result.stdout.strip().split('@', 1)[1]
