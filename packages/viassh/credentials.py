"""Credential sources: where the private keys used to authenticate each hop come from.

The default source is the user's ssh-agent, reached through the unix socket
named by SSH_AUTH_SOCK. Key files can be used instead when no agent is running.
"""

import logging
import os
import socket
from pathlib import Path
from typing import Optional, Protocol, Sequence, Union

import paramiko
from paramiko.agent import AgentSSH

from .exceptions import CredentialSourceError

logger = logging.getLogger(__name__)


class CredentialSource(Protocol):
    """Produces the keys that may be offered when logging in as ``username``."""

    def signers(self, username: str) -> Sequence[paramiko.PKey]:
        ...

    def close(self) -> None:
        ...


class _SocketAgent(AgentSSH):
    """paramiko agent client bound to an already connected socket."""

    def __init__(self, conn: socket.socket):
        super().__init__()
        self._connect(conn)


class AgentCredentialSource:
    """Keys held by a running ssh-agent."""

    def __init__(self, socket_path: Optional[str] = None):
        """Connect to the agent.

        Args:
            socket_path: Path of the agent socket. Defaults to $SSH_AUTH_SOCK.

        Raises:
            CredentialSourceError: If the agent cannot be reached or queried
        """
        path = socket_path or os.getenv("SSH_AUTH_SOCK")
        if not path:
            raise CredentialSourceError("error opening ssh-agent: SSH_AUTH_SOCK is not set")

        self.socket_path = path
        self._sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            self._sock.connect(path)
            self._agent = _SocketAgent(self._sock)
        except (OSError, paramiko.SSHException) as e:
            self._sock.close()
            raise CredentialSourceError(f"error opening ssh-agent at {path}: {e}", cause=e) from e

        logger.debug("ssh-agent at %s holds %d key(s)", path, len(self._agent.get_keys()))

    def signers(self, username: str) -> Sequence[paramiko.PKey]:
        return list(self._agent.get_keys())

    def close(self) -> None:
        self._sock.close()


class KeyFileCredentialSource:
    """Keys loaded from private key files (OpenSSH or PEM format)."""

    def __init__(self, paths: Sequence[Union[str, Path]], passphrase: Optional[str] = None):
        """Load all keys up front.

        Raises:
            CredentialSourceError: If no paths are given or a key cannot be loaded
        """
        if not paths:
            raise CredentialSourceError("no key files specified")

        secret = passphrase.encode("utf-8") if passphrase else None
        self._keys: list[paramiko.PKey] = []
        for raw in paths:
            path = Path(raw).expanduser()
            try:
                self._keys.append(paramiko.PKey.from_path(path, passphrase=secret))
            except (paramiko.PasswordRequiredException, TypeError) as e:
                raise CredentialSourceError(f"key {path} is encrypted and no passphrase was given", cause=e) from e
            except Exception as e:
                raise CredentialSourceError(f"failed to load key from {path}: {e}", cause=e) from e

    def signers(self, username: str) -> Sequence[paramiko.PKey]:
        return list(self._keys)

    def close(self) -> None:
        pass


def open_credential_source(
    agent_socket: Optional[str] = None,
    key_files: Sequence[Union[str, Path]] = (),
    passphrase: Optional[str] = None,
) -> CredentialSource:
    """Open key files when any are configured, the ssh-agent otherwise."""
    if key_files:
        return KeyFileCredentialSource(key_files, passphrase=passphrase)
    return AgentCredentialSource(agent_socket)
