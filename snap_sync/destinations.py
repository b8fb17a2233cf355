"""
Upload destinations for Snap Sync.

A destination accepts a named artifact (relative path + bytes) and
either stores it or raises a :class:`TransferError`.  Two kinds exist:
a local folder (here) and an SFTP server (:mod:`snap_sync.sftp`).
:func:`make_destination` builds the right one from a parsed descriptor.

Local writes never expose a half-written file: bytes go to a hidden
temporary file in the target folder first and are then atomically
renamed into place.  Existing files are handled with the same collision
strategies as the rest of the tool (overwrite / rename / skip), and an
existing file with identical content always counts as delivered.
"""

import hashlib
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path, PurePosixPath

from snap_sync.config import (
    COLLISION_OVERWRITE,
    COLLISION_SKIP,
    DEFAULT_RENAME_PATTERN,
)
from snap_sync.descriptors import Descriptor, LocalDescriptor, SftpDescriptor

logger = logging.getLogger(__name__)

_HASH_CHUNK = 256 * 1024  # 256 KiB read chunks for hashing

# _resolve_collision result: a different file is already there and stays
_KEEP_EXISTING = Path()


class TransferError(Exception):
    """An upload to a destination failed.  Retryable unless a subclass says otherwise."""

    kind = "transfer"
    retryable = True


class ConnectivityError(TransferError):
    """The destination could not be reached, or the connection dropped."""

    kind = "connectivity"


class AuthError(TransferError):
    """The destination rejected our credentials.  Not retried within a task."""

    kind = "auth"
    retryable = False


def _sha256_file(filepath: Path) -> str:
    """Return the hex SHA-256 digest of *filepath*."""
    h = hashlib.sha256()
    with open(filepath, "rb") as fh:
        while chunk := fh.read(_HASH_CHUNK):
            h.update(chunk)
    return h.hexdigest()


def _expand_rename_pattern(pattern: str, name: str, ext: str, counter: int) -> str:
    """
    Fill in a collision rename pattern.

    {name} and {ext} come from the colliding file, {n} is the attempt
    counter, and {date}, {time}, {datetime}, {ts} stamp the current time.
    """
    now = datetime.now()
    return pattern.format(
        name=name,
        ext=ext,
        n=counter,
        date=now.strftime("%Y-%m-%d"),
        time=now.strftime("%H-%M-%S"),
        datetime=now.strftime("%Y-%m-%d_%H-%M-%S"),
        ts=int(now.timestamp()),
    )


def safe_relative_path(relative_path: str) -> PurePosixPath:
    """Normalise *relative_path*, refusing absolute paths and ``..`` segments."""
    rel = PurePosixPath(relative_path.replace("\\", "/"))
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        raise ValueError(f"Refusing unsafe upload path: {relative_path!r}")
    return rel


class Destination:
    """Base class for upload targets."""

    def __init__(self, descriptor: Descriptor):
        self.descriptor = descriptor

    @property
    def id(self) -> str:
        """Stable identifier used in logs and dedup keys."""
        return self.descriptor.id

    def upload(self, relative_path: str, data: bytes) -> bool:
        """
        Store *data* at *relative_path* under the destination root.

        Returns False when a different existing file was kept instead
        (collision mode 'skip'), True once the bytes are in place.
        """
        raise NotImplementedError

    def delete_if_exists(self, relative_path: str) -> None:
        """Remove *relative_path* if present; a missing file is not an error."""
        raise NotImplementedError

    def probe(self) -> None:
        """Check the destination is usable; raise TransferError if not."""
        raise NotImplementedError

    def close(self) -> None:
        """Release any held connection."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id!r})"


class LocalDestination(Destination):
    """
    Writes artifacts below a local (or locally mounted) folder.

    Parameters
    ----------
    descriptor : LocalDescriptor
        Where the folder is.
    collision_mode : str
        One of 'overwrite', 'rename', 'skip'; applies only when an existing
        file has different content.
    rename_pattern : str
        Token pattern for renamed files on collision.
    verify : bool
        If True, re-read the written file and compare SHA-256 digests.
    """

    def __init__(
        self,
        descriptor: LocalDescriptor,
        collision_mode: str = COLLISION_OVERWRITE,
        rename_pattern: str = DEFAULT_RENAME_PATTERN,
        verify: bool = True,
    ):
        super().__init__(descriptor)
        self.root = Path(descriptor.path)
        self._collision_mode = collision_mode
        self._rename_pattern = rename_pattern
        self._verify = verify

    def probe(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TransferError(f"Cannot create {self.root}: {exc}") from exc
        if not os.access(self.root, os.W_OK):
            raise TransferError(f"Destination folder is not writable: {self.root}")

    def upload(self, relative_path: str, data: bytes) -> bool:
        dest = self.root.joinpath(*safe_relative_path(relative_path).parts)
        digest = hashlib.sha256(data).hexdigest()

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)

            final = self._resolve_collision(dest, digest)
            if final is None:
                return True
            if final is _KEEP_EXISTING:
                return False

            self._write_atomic(final, data)

            if self._verify:
                written = _sha256_file(final)
                if written != digest:
                    raise TransferError(
                        f"Verification failed: SHA-256 mismatch "
                        f"(expected={digest[:12]}… got={written[:12]}…)"
                    )
        except TransferError:
            raise
        except OSError as exc:
            raise TransferError(f"Writing {dest} failed: {exc}") from exc

        logger.debug("Wrote %d bytes to %s", len(data), final)
        return True

    def delete_if_exists(self, relative_path: str) -> None:
        target = self.root.joinpath(*safe_relative_path(relative_path).parts)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise TransferError(f"Removing {target} failed: {exc}") from exc
        logger.debug("Removed %s if it existed", target)

    def _resolve_collision(self, dest: Path, digest: str) -> Path | None:
        """
        Apply the configured collision strategy.

        Returns the path to write, None when the same bytes are already
        stored, or _KEEP_EXISTING when a different file is kept.
        """
        if not dest.exists():
            return dest

        if _sha256_file(dest) == digest:
            logger.info("Identical file already present, nothing to write: %s", dest)
            return None

        if self._collision_mode == COLLISION_OVERWRITE:
            return dest

        if self._collision_mode == COLLISION_SKIP:
            logger.warning("Skipping (collision, different file already exists): %s", dest)
            return _KEEP_EXISTING

        # COLLISION_RENAME
        stem = dest.stem
        ext = dest.suffix.lstrip(".")
        for n in range(1, 10_000):
            candidate = dest.parent / _expand_rename_pattern(self._rename_pattern, stem, ext, n)
            if not candidate.exists():
                return candidate
            if _sha256_file(candidate) == digest:
                return None

        ts = int(datetime.now().timestamp())
        return dest.parent / f"{stem}_{ts}.{ext}"

    @staticmethod
    def _write_atomic(final: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=final.parent, prefix=f".{final.name}.", suffix=".part"
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, final)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise


def make_destination(
    descriptor: Descriptor,
    collision_mode: str = COLLISION_OVERWRITE,
    rename_pattern: str = DEFAULT_RENAME_PATTERN,
    verify: bool = True,
) -> Destination:
    """Build the destination matching *descriptor*."""
    if isinstance(descriptor, LocalDescriptor):
        return LocalDestination(
            descriptor,
            collision_mode=collision_mode,
            rename_pattern=rename_pattern,
            verify=verify,
        )
    if isinstance(descriptor, SftpDescriptor):
        from snap_sync.sftp import SftpDestination

        return SftpDestination(descriptor)
    raise TypeError(f"Unsupported destination descriptor: {descriptor!r}")

