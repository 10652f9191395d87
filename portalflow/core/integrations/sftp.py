"""
SFTP upload client (paramiko, run in the default executor).
"""

import asyncio
import io
import logging
import posixpath

import paramiko

from .profiles import SftpProfile
from ..exceptions import ExternalCallError

logger = logging.getLogger(__name__)


def join_remote_path(directory: str, filename: str) -> str:
    """Join a remote directory and filename with exactly one slash."""
    directory = (directory or "/").strip() or "/"
    return posixpath.join(directory, filename)


class SftpClient:
    """
    Uploads a payload to an SFTP server.

    Example:
        client = SftpClient()
        await client.upload(profile, "/inbound/orders", "A1.json", b"{...}")
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def _load_key(self, private_key: str) -> paramiko.PKey:
        return paramiko.RSAKey.from_private_key(io.StringIO(private_key))

    def _ensure_directory(self, sftp: paramiko.SFTPClient, directory: str) -> None:
        current = ""
        for part in directory.strip("/").split("/"):
            if not part:
                continue
            current = f"{current}/{part}"
            try:
                sftp.stat(current)
            except FileNotFoundError:
                sftp.mkdir(current)

    def _upload_sync(self, profile: SftpProfile, directory: str, filename: str, data: bytes) -> str:
        remote_path = join_remote_path(directory, filename)
        transport = paramiko.Transport((profile.host, profile.port))
        transport.banner_timeout = self.timeout
        try:
            pkey = self._load_key(profile.private_key) if profile.private_key else None
            transport.connect(username=profile.username, password=profile.password, pkey=pkey)
            sftp = paramiko.SFTPClient.from_transport(transport)
            try:
                self._ensure_directory(sftp, directory)
                sftp.putfo(io.BytesIO(data), remote_path)
            finally:
                sftp.close()
        finally:
            transport.close()
        return remote_path

    async def upload(self, profile: SftpProfile, directory: str, filename: str, data: bytes) -> str:
        """
        Upload data as directory/filename.

        Returns:
            The remote path written

        Raises:
            ExternalCallError: On connection, auth or write failure
        """
        logger.info(f"SFTP upload {filename} to {profile.host}:{directory} ({len(data)} bytes)")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                lambda: self._upload_sync(profile, directory, filename, data)
            )
        except (paramiko.SSHException, OSError) as e:
            logger.error(f"SFTP upload to {profile.host} failed: {e}")
            raise ExternalCallError(f"SFTP upload failed: {e}") from e
