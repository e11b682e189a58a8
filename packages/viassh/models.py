"""Hop descriptors and the parser for via entries (user@host:port)."""

from enum import Enum
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import HostParseError, NoHostsError


class DialerState(str, Enum):
    """Lifecycle of a tunnel chain."""
    UNINITIALIZED = "uninitialized"
    BUILDING = "building"
    READY = "ready"            # All hops authenticated, dial() usable
    BUILD_FAILED = "build_failed"
    CLOSED = "closed"          # Terminal


class HopDescriptor(BaseModel):
    """One hop of the chain, parsed from a user@host:port entry."""
    model_config = ConfigDict(frozen=True, extra='forbid')

    username: str = Field(..., min_length=1, description="Login name on the hop")
    host: str = Field(..., min_length=1, description="Hostname or IP literal, unresolved")
    port: str = Field(..., min_length=1, pattern=r"^[0-9]+$", description="SSH port, verbatim")

    @property
    def address(self) -> str:
        """host:port, as handed to the transport below this hop."""
        return join_host_port(self.host, self.port)

    @property
    def port_number(self) -> int:
        return int(self.port)

    @property
    def known_hosts_name(self) -> str:
        """Name under which OpenSSH records this hop in known_hosts."""
        if self.port_number == 22:
            return self.host
        return f"[{self.host}]:{self.port}"

    def __str__(self) -> str:
        return f"{self.username}@{self.address}"


def split_host_port(hostport: str) -> tuple[str, str]:
    """Split "host:port" or "[v6addr]:port" into host and port.

    No name resolution is done and the port is not validated.

    Raises:
        ValueError: If the port is missing or the host part is ambiguous
    """
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {hostport!r}")
        host, rest = hostport[1:end], hostport[end + 1:]
        if not rest.startswith(":"):
            raise ValueError(f"missing port in address {hostport!r}")
        return host, rest[1:]

    host, sep, port = hostport.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {hostport!r}")
    if ":" in host:
        raise ValueError(f"too many colons in address {hostport!r}")
    return host, port


def join_host_port(host: str, port: str | int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def parse_port(port: str) -> int:
    """Parse a decimal TCP port.

    Raises:
        ValueError: If the port is empty, not decimal or out of range
    """
    if not port:
        raise ValueError("missing port")
    if not port.isascii() or not port.isdigit():
        raise ValueError(f"invalid port {port!r}")
    value = int(port)
    if not 1 <= value <= 65535:
        raise ValueError(f"port {value} out of range")
    return value


def parse_hop(hop: str, index: int = 0) -> HopDescriptor:
    """Parse a via entry on the form user@host:port.

    All three components are mandatory and kept verbatim: no DNS lookups
    and no default port.

    Args:
        hop: The via entry
        index: Position of the entry in the configured list (for diagnostics)

    Returns:
        HopDescriptor for the entry

    Raises:
        HostParseError: If the entry is malformed
    """
    if not isinstance(hop, str) or not hop:
        raise HostParseError("empty entry", host=str(hop), index=index)
    if any(c.isspace() for c in hop):
        raise HostParseError("whitespace not allowed", host=hop, index=index)
    if any(c in hop for c in "/?#"):
        raise HostParseError("unexpected path, query or fragment", host=hop, index=index)

    userinfo, at, hostport = hop.rpartition("@")
    if not at or not userinfo:
        raise HostParseError("missing username", host=hop, index=index)
    if ":" in userinfo:
        raise HostParseError("passwords are not accepted in via entries", host=hop, index=index)

    try:
        host, port = split_host_port(hostport)
        parse_port(port)
    except ValueError as e:
        raise HostParseError(str(e), host=hop, index=index) from e
    if not host:
        raise HostParseError("missing host", host=hop, index=index)

    return HopDescriptor(username=userinfo, host=host, port=port)


def parse_hops(hops: Sequence[str]) -> list[HopDescriptor]:
    """Parse every via entry before any connection is attempted.

    Raises:
        NoHostsError: If ``hops`` is empty
        HostParseError: For the first malformed entry
    """
    if not hops:
        raise NoHostsError()
    return [parse_hop(hop, i) for i, hop in enumerate(hops)]
