"""Configuration for viassh dialers."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .hostkeys import POLICIES, POLICY_KNOWN_HOSTS


@dataclass
class ViaConfig:
    """Configuration for a tunnel chain."""
    # Via entries on the form username@host:port, all components mandatory
    hosts: list[str] = field(default_factory=list)
    # Sink for diagnostic lines; None discards them
    logger: Optional[logging.Logger] = None

    # Credentials: key files if given, otherwise the ssh-agent
    agent_socket: Optional[str] = None
    key_files: list[Path] = field(default_factory=list)
    key_passphrase: Optional[str] = field(default=None, repr=False)

    # Host key verification
    host_key_policy: str = POLICY_KNOWN_HOSTS
    known_hosts_file: Optional[Path] = None


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in re.split(rf"[,{re.escape(os.pathsep)}]", value) if item.strip()]


def get_config() -> ViaConfig:
    """Load configuration from environment.

    Required environment variables:
        VIASSH_HOSTS: Comma separated via entries (user@host:port,...)

    Optional environment variables:
        SSH_AUTH_SOCK: ssh-agent socket (default credential source)
        VIASSH_KEY_FILES: Private key files to use instead of the agent,
            separated by commas or the platform path separator
        VIASSH_KEY_PASSPHRASE: Passphrase for encrypted key files
        VIASSH_HOST_KEY_POLICY: known_hosts (default), warn or insecure
        VIASSH_KNOWN_HOSTS: known_hosts file (default: ~/.ssh/known_hosts)

    Returns:
        ViaConfig with loaded values

    Raises:
        ConfigurationError: If VIASSH_HOSTS is missing
    """
    # Load .env from the working directory if there is one
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file)

    hosts = [h.strip() for h in os.getenv("VIASSH_HOSTS", "").split(",") if h.strip()]
    if not hosts:
        raise ConfigurationError(
            "VIASSH_HOSTS environment variable is required. "
            "It should list at least one via entry on the form user@host:port.",
            missing_key="VIASSH_HOSTS"
        )

    key_files = [Path(p).expanduser() for p in _split_list(os.getenv("VIASSH_KEY_FILES", ""))]
    known_hosts = os.getenv("VIASSH_KNOWN_HOSTS")

    return ViaConfig(
        hosts=hosts,
        agent_socket=os.getenv("SSH_AUTH_SOCK"),
        key_files=key_files,
        key_passphrase=os.getenv("VIASSH_KEY_PASSPHRASE"),
        host_key_policy=os.getenv("VIASSH_HOST_KEY_POLICY", POLICY_KNOWN_HOSTS),
        known_hosts_file=Path(known_hosts).expanduser() if known_hosts else None,
    )


def validate_config(config: ViaConfig) -> None:
    """Validate settings that can be checked without touching the network.

    Raises:
        ConfigurationError: If the policy is unknown or a configured file is missing
    """
    if config.host_key_policy not in POLICIES:
        raise ConfigurationError(
            f"unknown host key policy {config.host_key_policy!r}, "
            f"expected one of {', '.join(POLICIES)}",
            missing_key="VIASSH_HOST_KEY_POLICY"
        )

    for key_file in config.key_files:
        if not Path(key_file).expanduser().exists():
            raise ConfigurationError(
                f"key file not found at {key_file}",
                missing_key="VIASSH_KEY_FILES"
            )

    if config.known_hosts_file and not Path(config.known_hosts_file).expanduser().exists():
        raise ConfigurationError(
            f"known hosts file not found at {config.known_hosts_file}",
            missing_key="VIASSH_KNOWN_HOSTS"
        )
