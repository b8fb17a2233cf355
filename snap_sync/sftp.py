"""SFTP destination for Snap Sync.

Uses paramiko to keep one SSH session per destination, authenticated
with a private-key file.  The session is created lazily, shared by all
uploads to that destination (one at a time, under a lock) and thrown
away on any connection-level error so the next retry reconnects.

Files are written to a hidden ``.part`` name first and renamed into
place, so a reader on the server never sees a truncated artifact.
"""

import errno
import logging
import socket
import threading
import uuid
from pathlib import Path, PurePosixPath

import paramiko
from paramiko.pkey import UnknownKeyType

from snap_sync.descriptors import SftpDescriptor
from snap_sync.destinations import (
    AuthError,
    ConnectivityError,
    Destination,
    TransferError,
    safe_relative_path,
)

logger = logging.getLogger(__name__)

_CONNECT_TIMEOUT = 30.0

# Errors that mean the session itself is unusable
_SESSION_ERRORS = (paramiko.SSHException, EOFError, socket.error)


class SftpDestination(Destination):
    """Uploads artifacts to a directory on an SFTP server."""

    def __init__(
        self,
        descriptor: SftpDescriptor,
        connect_timeout: float = _CONNECT_TIMEOUT,
        client_factory=paramiko.SSHClient,
        key_loader=paramiko.PKey.from_path,
    ):
        super().__init__(descriptor)
        self.base_path = PurePosixPath(descriptor.remote_path or ".")
        self._connect_timeout = connect_timeout
        self._client_factory = client_factory
        self._key_loader = key_loader
        self._client: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None
        self._known_dirs: set[str] = set()
        self._lock = threading.Lock()

    # ---- session handling ----

    def _session(self) -> paramiko.SFTPClient:
        """Return the cached SFTP channel, connecting if needed."""
        if self._sftp is not None and self._is_alive():
            return self._sftp
        self._invalidate()

        d = self.descriptor
        identity = Path(d.identity).expanduser()
        if not identity.is_file():
            raise AuthError(f"Private key isn't readable in path: {identity}")
        key = self._load_key(identity)

        client = self._client_factory()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.WarningPolicy())
        logger.debug("Connecting to %s@%s", d.username, d.address)
        try:
            client.connect(
                hostname=d.host,
                port=d.port,
                username=d.username,
                pkey=key,
                timeout=self._connect_timeout,
                banner_timeout=self._connect_timeout,
                auth_timeout=self._connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
            sftp = client.open_sftp()
        except paramiko.AuthenticationException as exc:
            client.close()
            raise AuthError(f"Public key auth failed for {d.username}@{d.address}: {exc}") from exc
        except (*_SESSION_ERRORS, OSError) as exc:
            client.close()
            raise ConnectivityError(f"Connecting to {d.address} failed: {exc}") from exc

        self._client = client
        self._sftp = sftp
        logger.info("SFTP session opened to %s", self.id)
        return sftp

    def _load_key(self, identity: Path) -> paramiko.PKey:
        try:
            return self._key_loader(identity)
        except paramiko.PasswordRequiredException as exc:
            raise AuthError(f"Private key {identity} is encrypted: {exc}") from exc
        except (paramiko.SSHException, UnknownKeyType, ValueError, OSError) as exc:
            raise AuthError(f"Private key {identity} could not be loaded: {exc}") from exc

    def _is_alive(self) -> bool:
        transport = self._client.get_transport() if self._client else None
        return transport is not None and transport.is_active()

    def _invalidate(self) -> None:
        """Drop the cached session; the next call reconnects."""
        sftp, client = self._sftp, self._client
        self._sftp = None
        self._client = None
        self._known_dirs.clear()
        for handle in (sftp, client):
            if handle is None:
                continue
            try:
                handle.close()
            except Exception:
                logger.debug("Error closing SFTP handle for %s", self.id, exc_info=True)

    # ---- remote operations ----

    def _mkdir_p(self, sftp: paramiko.SFTPClient, path: PurePosixPath) -> None:
        current = PurePosixPath(path.anchor) if path.is_absolute() else PurePosixPath()
        for part in path.parts[1:] if path.is_absolute() else path.parts:
            current = current / part
            key = str(current)
            if key in self._known_dirs or part == ".":
                continue
            try:
                sftp.stat(key)
            except FileNotFoundError:
                logger.debug("Creating remote directory %s on %s", key, self.id)
                sftp.mkdir(key)
            self._known_dirs.add(key)

    @staticmethod
    def _rename_into_place(sftp: paramiko.SFTPClient, tmp: str, final: str) -> None:
        try:
            sftp.posix_rename(tmp, final)
            return
        except OSError as exc:
            # server without the posix-rename extension
            if exc.errno not in (None, errno.EOPNOTSUPP, errno.ENOSYS):
                raise
        try:
            sftp.remove(final)
        except FileNotFoundError:
            pass
        sftp.rename(tmp, final)

    def _remove_quietly(self, sftp: paramiko.SFTPClient, path: str) -> None:
        try:
            sftp.remove(path)
        except Exception:
            logger.debug("Could not remove temporary file %s on %s", path, self.id, exc_info=True)

    def upload(self, relative_path: str, data: bytes) -> bool:
        remote = self.base_path.joinpath(*safe_relative_path(relative_path).parts)
        tmp = str(remote.with_name(f".{remote.name}.{uuid.uuid4().hex[:8]}.part"))

        with self._lock:
            sftp = self._session()
            try:
                self._mkdir_p(sftp, remote.parent)
                try:
                    with sftp.open(tmp, "wb") as fh:
                        fh.set_pipelined(True)
                        fh.write(data)
                    self._rename_into_place(sftp, tmp, str(remote))
                except BaseException:
                    self._remove_quietly(sftp, tmp)
                    raise
            except PermissionError as exc:
                raise TransferError(f"Permission denied writing {remote} on {self.id}: {exc}") from exc
            except FileNotFoundError as exc:
                self._known_dirs.clear()
                raise TransferError(f"Remote path vanished while writing {remote}: {exc}") from exc
            except (*_SESSION_ERRORS, OSError) as exc:
                self._invalidate()
                raise ConnectivityError(f"Upload of {remote} to {self.id} failed: {exc}") from exc

        logger.debug("Uploaded %d bytes to %s:%s", len(data), self.id, remote)
        return True

    def delete_if_exists(self, relative_path: str) -> None:
        remote = str(self.base_path.joinpath(*safe_relative_path(relative_path).parts))
        with self._lock:
            sftp = self._session()
            try:
                sftp.remove(remote)
            except FileNotFoundError:
                return
            except PermissionError as exc:
                raise TransferError(f"Permission denied removing {remote} on {self.id}: {exc}") from exc
            except (*_SESSION_ERRORS, OSError) as exc:
                self._invalidate()
                raise ConnectivityError(f"Removing {remote} from {self.id} failed: {exc}") from exc
        logger.debug("Removed %s:%s", self.id, remote)

    def probe(self) -> None:
        with self._lock:
            sftp = self._session()
            try:
                self._mkdir_p(sftp, self.base_path)
                sftp.listdir(str(self.base_path))
            except PermissionError as exc:
                raise TransferError(f"Permission denied on {self.base_path}: {exc}") from exc
            except (*_SESSION_ERRORS, OSError) as exc:
                self._invalidate()
                raise ConnectivityError(f"Probing {self.id} failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._invalidate()
