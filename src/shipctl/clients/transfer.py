"""Artifact upload over SFTP."""

from typing import Any

import paramiko

from shipctl.clients.base import ArtifactTransfer
from shipctl.clients.ssh import SSHExecutor
from shipctl.core.exceptions import TransferError
from shipctl.core.logging import StructuredLogger
from shipctl.deploy.models import Artifact, DeploymentTarget

logger = StructuredLogger(__name__)


class SFTPTransfer(ArtifactTransfer):
    """Uploads artifacts over the executor's SSH sessions.

    The file is written under a hidden temporary name in the deploy
    directory and renamed over the destination once complete.
    """

    def __init__(self, executor: SSHExecutor):
        self._executor = executor

    def upload(self, target: DeploymentTarget, artifact: Artifact) -> str:
        remote_path = target.remote_path(artifact.remote_file_name)
        temp_path = target.remote_path(f".{artifact.remote_file_name}.part")

        client = self._executor.connect(target)
        try:
            sftp = client.open_sftp()
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(
                f"Cannot open SFTP session to {target.host}: {e}", remote_path=remote_path
            )

        logger.info("Uploading artifact", host=target.host, path=remote_path)
        try:
            sftp.put(artifact.local_path, temp_path, confirm=True)
            sftp.posix_rename(temp_path, remote_path)
        except (paramiko.SSHException, OSError) as e:
            self._discard(sftp, temp_path)
            raise TransferError(
                f"Upload of {artifact.local_path} to {target.host}:{remote_path} failed: {e}",
                remote_path=remote_path,
            )
        finally:
            sftp.close()

        return remote_path

    def _discard(self, sftp: Any, path: str) -> None:
        try:
            sftp.remove(path)
        except (paramiko.SSHException, OSError) as e:
            logger.debug("Could not remove partial upload", path=path, error=str(e))
