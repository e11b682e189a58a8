"""Host key trust policies applied to every hop after the key exchange.

KnownHostsPolicy is the default. Accepting any host key is available, but only
when asked for by name, since it makes every hop open to impersonation.
"""

import base64
import hashlib
import logging
from pathlib import Path
from typing import Optional, Union

import paramiko

from .exceptions import ConfigurationError, HostKeyError
from .models import HopDescriptor

logger = logging.getLogger(__name__)

DEFAULT_KNOWN_HOSTS = "~/.ssh/known_hosts"

POLICY_KNOWN_HOSTS = "known_hosts"
POLICY_WARN = "warn"
POLICY_INSECURE = "insecure"
POLICIES = (POLICY_KNOWN_HOSTS, POLICY_WARN, POLICY_INSECURE)

# Signature algorithms that all verify against an ssh-rsa known_hosts entry
_RSA_KEY_TYPES = ("rsa-sha2-512", "rsa-sha2-256", "ssh-rsa")


def fingerprint(key: paramiko.PKey) -> str:
    """OpenSSH style SHA256 fingerprint of a public key."""
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


class HostKeyPolicy:
    """Decides whether the key presented by a hop is trusted."""

    def verify(self, hop: HopDescriptor, key: paramiko.PKey) -> None:
        """Return if the key is trusted, raise HostKeyError otherwise."""
        raise NotImplementedError

    def preferred_key_types(self, hop: HopDescriptor) -> list[str]:
        """Host key types to negotiate first with this hop, if any."""
        return []


class KnownHostsPolicy(HostKeyPolicy):
    """Only trust keys recorded in an OpenSSH known_hosts file."""

    def __init__(self, known_hosts_file: Optional[Union[str, Path]] = None):
        self.path = Path(known_hosts_file or DEFAULT_KNOWN_HOSTS).expanduser()
        self._host_keys = paramiko.HostKeys()
        if self.path.exists():
            try:
                self._host_keys.load(str(self.path))
            except (OSError, paramiko.SSHException) as e:
                raise ConfigurationError(
                    f"failed to read known hosts file {self.path}: {e}",
                    missing_key="VIASSH_KNOWN_HOSTS"
                ) from e
        else:
            logger.debug("known hosts file %s does not exist", self.path)

    def _known_keys(self, hop: HopDescriptor):
        return self._host_keys.lookup(hop.known_hosts_name)

    def preferred_key_types(self, hop: HopDescriptor) -> list[str]:
        known = self._known_keys(hop)
        if not known:
            return []
        types: list[str] = []
        for name in known.keys():
            types.extend(_RSA_KEY_TYPES if name == "ssh-rsa" else [name])
        return types

    def verify(self, hop: HopDescriptor, key: paramiko.PKey) -> None:
        known = self._known_keys(hop)
        if known is None:
            self.unknown_host(hop, key)
            return
        recorded = known.get(key.get_name())
        if recorded is None or recorded.asbytes() != key.asbytes():
            raise HostKeyError(
                f"host key for {hop.known_hosts_name} does not match {self.path} "
                f"({key.get_name()} {fingerprint(key)})",
                hop=str(hop),
                fingerprint=fingerprint(key),
            )

    def unknown_host(self, hop: HopDescriptor, key: paramiko.PKey) -> None:
        raise HostKeyError(
            f"host {hop.known_hosts_name} is not in {self.path} "
            f"({key.get_name()} {fingerprint(key)})",
            hop=str(hop),
            fingerprint=fingerprint(key),
        )


class WarnUnknownHostPolicy(KnownHostsPolicy):
    """Like KnownHostsPolicy, but unknown hosts are accepted with a warning.

    A host whose recorded key differs is still rejected.
    """

    def unknown_host(self, hop: HopDescriptor, key: paramiko.PKey) -> None:
        logger.warning(
            "accepting unknown host key for %s: %s %s",
            hop.known_hosts_name, key.get_name(), fingerprint(key)
        )


class InsecureAcceptAnyPolicy(HostKeyPolicy):
    """Accept every host key without verification."""

    def verify(self, hop: HopDescriptor, key: paramiko.PKey) -> None:
        logger.warning(
            "host key verification disabled, accepting %s %s for %s",
            key.get_name(), fingerprint(key), hop
        )


def get_host_key_policy(
    name: str = POLICY_KNOWN_HOSTS,
    known_hosts_file: Optional[Union[str, Path]] = None,
) -> HostKeyPolicy:
    """Create a policy by name: known_hosts, warn or insecure.

    Raises:
        ConfigurationError: If the name is unknown
    """
    if name == POLICY_KNOWN_HOSTS:
        return KnownHostsPolicy(known_hosts_file)
    if name == POLICY_WARN:
        return WarnUnknownHostPolicy(known_hosts_file)
    if name == POLICY_INSECURE:
        return InsecureAcceptAnyPolicy()
    raise ConfigurationError(
        f"unknown host key policy {name!r}, expected one of {', '.join(POLICIES)}",
        missing_key="VIASSH_HOST_KEY_POLICY"
    )
