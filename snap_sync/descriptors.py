"""
Destination descriptor strings for Snap Sync.

Each configured upload destination is a single string:

  local:path=/srv/frigate-backup
  sftp:username=user;host=example.com:2222;remote-path=/data;identity=/home/user/.ssh/id_ed25519

Keys are case-insensitive ASCII, separated by ``;``.  An optional
``id=`` key gives the destination a stable name for logs and dedup.
"""

from __future__ import annotations

from dataclasses import dataclass

LOCAL_PREFIX = "local"
SFTP_PREFIX = "sftp"

LOCAL_KEY_PATH = "path"
SFTP_KEY_USER = "username"
SFTP_KEY_HOST = "host"
SFTP_KEY_PATH = "remote-path"
SFTP_KEY_IDENTITY = "identity"
KEY_ID = "id"

DEFAULT_SFTP_PORT = 22


class DescriptorError(ValueError):
    """A destination descriptor string could not be parsed."""


@dataclass(frozen=True)
class LocalDescriptor:
    path: str
    name: str = ""

    @property
    def id(self) -> str:
        return self.name or str(self)

    def __str__(self) -> str:
        return f"{LOCAL_PREFIX}:{LOCAL_KEY_PATH}={self.path}"


@dataclass(frozen=True)
class SftpDescriptor:
    username: str
    host: str
    port: int
    remote_path: str
    identity: str
    name: str = ""

    @property
    def id(self) -> str:
        return self.name or str(self)

    @property
    def address(self) -> str:
        if self.port == DEFAULT_SFTP_PORT:
            return self.host
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        # identity path stays out of logs and ids
        return (
            f"{SFTP_PREFIX}:{SFTP_KEY_USER}={self.username};{SFTP_KEY_HOST}={self.address};"
            f"{SFTP_KEY_PATH}={self.remote_path}"
        )


Descriptor = LocalDescriptor | SftpDescriptor


def parse_key_values(
    text: str,
    describing: str,
    required: tuple[str, ...],
    optional: tuple[str, ...] = (),
) -> dict[str, str]:
    """Split ``k1=v1;k2=v2`` into a dict, enforcing the allowed key set."""
    allowed = set(required) | set(optional)
    result: dict[str, str] = {}

    for part in text.split(";"):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise DescriptorError(f"Invalid format. Expected key=value. Found: {part}")
        if not key.isascii():
            raise DescriptorError(f"Keys for path descriptor must be ascii. Found invalid key: '{key}'")
        key = key.strip().lower()
        if key in result:
            raise DescriptorError(f"Duplicate key: {part}")
        if key not in allowed:
            raise DescriptorError(f"Unexpected key for descriptor '{describing}'. Key: {key}")
        result[key] = value.strip()

    for key in required:
        if key not in result:
            raise DescriptorError(f"Required key '{key}' for descriptor '{describing}' not found.")

    return result


def parse_descriptor(text: str) -> Descriptor:
    """Parse one destination descriptor string."""
    kind, sep, body = text.partition(":")
    if not sep:
        raise DescriptorError("Path descriptor does not contain the path type before ':'")

    kind = kind.strip().lower()
    if kind == LOCAL_PREFIX:
        values = parse_key_values(body, kind, (LOCAL_KEY_PATH,), (KEY_ID,))
        if not values[LOCAL_KEY_PATH]:
            raise DescriptorError("Local descriptor has an empty path")
        return LocalDescriptor(path=values[LOCAL_KEY_PATH], name=values.get(KEY_ID, ""))

    if kind == SFTP_PREFIX:
        values = parse_key_values(
            body,
            kind,
            (SFTP_KEY_USER, SFTP_KEY_HOST, SFTP_KEY_PATH, SFTP_KEY_IDENTITY),
            (KEY_ID,),
        )
        host, _, port_text = values[SFTP_KEY_HOST].partition(":")
        port = DEFAULT_SFTP_PORT
        if port_text:
            try:
                port = int(port_text)
            except ValueError:
                raise DescriptorError(f"Failed to parse port: '{port_text}'") from None
            if not 0 < port < 65536:
                raise DescriptorError(f"Port out of range: {port}")
        if not host:
            raise DescriptorError("SFTP descriptor has an empty host")
        return SftpDescriptor(
            username=values[SFTP_KEY_USER],
            host=host,
            port=port,
            remote_path=values[SFTP_KEY_PATH],
            identity=values[SFTP_KEY_IDENTITY],
            name=values.get(KEY_ID, ""),
        )

    raise DescriptorError(f"Unknown path descriptor prefix used: '{kind}'")
