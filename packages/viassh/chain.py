"""Tunnel chain construction and the Dialer it produces.

Each hop gets its own authenticated SSH transport. Hop 0 is reached over a
plain TCP connection; every later hop is reached through a direct-tcpip
channel opened on the previous hop's transport, so the whole chain behaves as
one tunnel. The Dialer opens connections from the last hop:

    with create_dialer(ViaConfig(hosts=["alice@bastion:22", "bob@internal:2222"])) as dialer:
        conn = dialer.dial("tcp", "example.com:80")
"""

import logging
import socket
from typing import Any, Callable, Optional, Sequence, Union

import paramiko

from .config import ViaConfig, get_config, validate_config
from .credentials import CredentialSource, open_credential_source
from .exceptions import (
    AuthenticationError,
    CloseError,
    DialerClosedError,
    HopCloseError,
    HopDialError,
    NoHostsError,
    RemoteDialError,
    ViaSSHError,
)
from .hostkeys import HostKeyPolicy, get_host_key_policy
from .models import (
    DialerState,
    HopDescriptor,
    join_host_port,
    parse_hop,
    parse_hops,
    parse_port,
    split_host_port,
)
from .transport import ViaTransport

# Opens a byte stream to (host, port); returns a socket or a paramiko Channel
DialFn = Callable[[str, int], Any]

TCP_NETWORKS = ("tcp", "tcp4", "tcp6")
UNIX_NETWORK = "unix"

# Originator address sent with direct-tcpip requests
_ORIGINATOR = ("127.0.0.1", 0)


def _discard_logger() -> logging.Logger:
    # Not registered with logging.getLogger, so never shared between dialers
    log = logging.Logger("viassh.discard")
    log.addHandler(logging.NullHandler())
    log.disabled = True
    return log


# ============================================================================
# Dial capabilities
# ============================================================================

def direct_dial(host: str, port: int) -> socket.socket:
    """Plain TCP connection from this machine, used for the first hop."""
    return socket.create_connection((host, port))


def session_dial(transport: paramiko.Transport) -> DialFn:
    """Dial capability that connects through an established hop."""
    def dial(host: str, port: int) -> paramiko.Channel:
        return transport.open_channel("direct-tcpip", (host, port), _ORIGINATOR)
    return dial


# ============================================================================
# Sessions
# ============================================================================

def _authenticate(transport: paramiko.Transport, hop: HopDescriptor, credentials: CredentialSource) -> None:
    """Offer each signer in turn until the hop accepts one."""
    signers = credentials.signers(hop.username)
    if not signers:
        raise AuthenticationError(f"no keys available to log in as {hop.username}", username=hop.username)

    rejected = 0
    for key in signers:
        try:
            remaining = transport.auth_publickey(hop.username, key)
        except paramiko.BadAuthenticationType as e:
            raise AuthenticationError(
                f"{hop.address} does not accept public key authentication (allowed: {', '.join(e.allowed_types)})",
                username=hop.username
            ) from e
        except paramiko.AuthenticationException:
            rejected += 1
            continue
        if transport.is_authenticated():
            return
        if remaining:
            raise AuthenticationError(
                f"{hop.address} accepted the key for {hop.username} but requires "
                f"further authentication ({', '.join(remaining)})",
                username=hop.username
            )
        rejected += 1

    raise AuthenticationError(
        f"{hop.address} rejected all {rejected} key(s) for {hop.username}",
        username=hop.username
    )


def open_session(
    sock: Any,
    hop: HopDescriptor,
    credentials: CredentialSource,
    host_key_policy: HostKeyPolicy,
) -> paramiko.Transport:
    """Run the SSH handshake over ``sock`` and log in to ``hop``.

    ``sock`` is closed on failure.

    Raises:
        HostKeyError: If the host key policy rejects the hop
        AuthenticationError: If no key is accepted
        paramiko.SSHException: On protocol failures
    """
    try:
        transport = ViaTransport(sock)
    except Exception:
        sock.close()
        raise
    try:
        # Negotiate a key type the policy can check, not paramiko's first choice
        transport.prefer_host_key_types(host_key_policy.preferred_key_types(hop))
        transport.start_client()
        host_key_policy.verify(hop, transport.get_remote_server_key())
        _authenticate(transport, hop, credentials)
    except Exception:
        transport.close()
        raise
    return transport


def close_sessions(
    hops: Sequence[HopDescriptor],
    transports: Sequence[paramiko.Transport],
    log: logging.Logger,
) -> list[HopCloseError]:
    """Close transports last-established first, attempting every one.

    Returns:
        One HopCloseError per transport that failed to close
    """
    errors: list[HopCloseError] = []
    for i in range(len(transports) - 1, -1, -1):
        log.info("closing ssh connection to [%s]", hops[i])
        try:
            transports[i].close()
        except Exception as e:
            errors.append(HopCloseError(str(hops[i]), i, e))
    return errors


# ============================================================================
# Chain builder
# ============================================================================

class ChainBuilder:
    """Builds a tunnel chain one hop at a time.

    Hop i+1 is only attempted once hop i is authenticated. Any failure aborts
    the build, closes the hops opened so far and raises; a partial chain is
    never handed out.
    """

    def __init__(
        self,
        hops: Sequence[Union[str, HopDescriptor]],
        credentials: CredentialSource,
        host_key_policy: HostKeyPolicy,
        logger: Optional[logging.Logger] = None,
    ):
        self._hops = list(hops)
        self._credentials = credentials
        self._host_key_policy = host_key_policy
        self._log = logger or _discard_logger()
        self.state = DialerState.UNINITIALIZED

    def _descriptors(self) -> list[HopDescriptor]:
        if not self._hops:
            raise NoHostsError()
        return [h if isinstance(h, HopDescriptor) else parse_hop(h, i) for i, h in enumerate(self._hops)]

    def build(self, close_credentials: bool = False) -> "Dialer":
        """Establish every hop and return a ready Dialer.

        Args:
            close_credentials: Hand the credential source to the Dialer, which
                closes it together with the hops

        Raises:
            NoHostsError: If no hops were given
            HostParseError: If a via entry is malformed (nothing is dialed)
            HopDialError: If a hop cannot be reached or logged in to
        """
        if self.state is not DialerState.UNINITIALIZED:
            raise ViaSSHError(f"chain builder already used (state: {self.state.value})")
        self.state = DialerState.BUILDING

        try:
            descriptors = self._descriptors()
        except ViaSSHError:
            self.state = DialerState.BUILD_FAILED
            raise

        transports: list[paramiko.Transport] = []
        dial: DialFn = direct_dial
        for i, hop in enumerate(descriptors):
            self._log.info("connecting to [%s]", hop)
            try:
                transport = open_session(
                    dial(hop.host, hop.port_number), hop, self._credentials, self._host_key_policy
                )
            except Exception as e:
                self.state = DialerState.BUILD_FAILED
                for err in close_sessions(descriptors[:i], transports, self._log):
                    self._log.warning("%s", err)
                raise HopDialError(str(hop), i, e) from e

            transports.append(transport)
            dial = session_dial(transport)

        self.state = DialerState.READY
        return Dialer(
            descriptors,
            transports,
            logger=self._log,
            credentials=self._credentials if close_credentials else None,
        )


def build(
    hops: Sequence[Union[str, HopDescriptor]],
    credentials: CredentialSource,
    host_key_policy: HostKeyPolicy,
    logger: Optional[logging.Logger] = None,
) -> "Dialer":
    """Build a tunnel chain through ``hops`` and return its Dialer.

    See ChainBuilder.build for the errors raised.
    """
    return ChainBuilder(hops, credentials, host_key_policy, logger).build()


def create_dialer(config: Optional[ViaConfig] = None) -> "Dialer":
    """Create a Dialer from configuration.

    Via entries are parsed before the credential source is opened, so a
    malformed entry fails without touching the agent or the network. The
    Dialer owns the credential source it opened here.

    Args:
        config: Configuration object. If None, loads from environment.
    """
    config = config or get_config()
    validate_config(config)
    hops = parse_hops(config.hosts)

    host_key_policy = get_host_key_policy(config.host_key_policy, config.known_hosts_file)
    credentials = open_credential_source(
        agent_socket=config.agent_socket,
        key_files=config.key_files,
        passphrase=config.key_passphrase,
    )
    try:
        return ChainBuilder(hops, credentials, host_key_policy, config.logger).build(close_credentials=True)
    except Exception:
        credentials.close()
        raise


# ============================================================================
# Dialer
# ============================================================================

class Dialer:
    """Opens connections from the far end of a tunnel chain.

    dial() is a pass-through to the last hop's transport; paramiko serializes
    channel creation, so it may be called from several threads at once.

    close() may be called once. Closing again, or dialing after close, raises
    DialerClosedError.
    """

    def __init__(
        self,
        hops: Sequence[HopDescriptor],
        transports: Sequence[paramiko.Transport],
        logger: Optional[logging.Logger] = None,
        credentials: Optional[CredentialSource] = None,
    ):
        if not transports or len(hops) != len(transports):
            raise ValueError("a Dialer needs exactly one transport per hop")
        self._hops = tuple(hops)
        self._transports = tuple(transports)
        self._log = logger or _discard_logger()
        self._credentials = credentials
        self._state = DialerState.READY

    @property
    def hops(self) -> tuple[HopDescriptor, ...]:
        return self._hops

    @property
    def state(self) -> DialerState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is DialerState.CLOSED

    def __len__(self) -> int:
        return len(self._transports)

    def __repr__(self) -> str:
        chain = " -> ".join(str(h) for h in self._hops)
        return f"Dialer({chain}, {self._state.value})"

    def dial(self, network: str, address: str) -> paramiko.Channel:
        """Connect to ``address`` from the last hop.

        The host part is resolved by the last hop, never locally.

        Args:
            network: "tcp", "tcp4", "tcp6", or "unix" for a socket path on the last hop
            address: "host:port" or "[v6addr]:port"; the port may be a service name

        Returns:
            A connected paramiko Channel (socket-like)

        Raises:
            DialerClosedError: If the dialer was closed
            RemoteDialError: If the address is invalid or the last hop refuses the connection
        """
        if self._state is DialerState.CLOSED:
            raise DialerClosedError()

        self._log.info("dialing [%s]", address)
        if network == UNIX_NETWORK:
            return self._dial_unix(address)
        if network not in TCP_NETWORKS:
            raise RemoteDialError(network, address, f"unsupported network {network!r}")

        try:
            host, port = split_host_port(address)
            port_number = _lookup_port(port)
        except ValueError as e:
            raise RemoteDialError(network, address, e) from e

        try:
            return self._transports[-1].open_channel("direct-tcpip", (host, port_number), _ORIGINATOR)
        except (paramiko.SSHException, EOFError, OSError) as e:
            raise RemoteDialError(network, address, e) from e

    def _dial_unix(self, path: str) -> paramiko.Channel:
        if not path:
            raise RemoteDialError(UNIX_NETWORK, path, "missing socket path")
        try:
            return self._transports[-1].open_streamlocal_channel(path)
        except (paramiko.SSHException, EOFError, OSError) as e:
            raise RemoteDialError(UNIX_NETWORK, path, e) from e

    def create_connection(self, address: tuple[str, int], timeout: Optional[float] = None) -> paramiko.Channel:
        """socket.create_connection() lookalike for code that takes a connect function."""
        host, port = address
        chan = self.dial("tcp", join_host_port(host, port))
        if timeout is not None:
            chan.settimeout(timeout)
        return chan

    def close(self) -> None:
        """Close every hop, last-established first.

        Raises:
            DialerClosedError: If already closed
            CloseError: Holding one HopCloseError per hop that failed to close
        """
        if self._state is DialerState.CLOSED:
            raise DialerClosedError("dialer is already closed")
        self._state = DialerState.CLOSED

        try:
            errors = close_sessions(self._hops, self._transports, self._log)
        finally:
            if self._credentials is not None:
                self._credentials.close()
        if errors:
            raise CloseError(errors)

    def __enter__(self) -> "Dialer":
        return self

    def __exit__(self, *exc) -> None:
        if not self.closed:
            self.close()


def _lookup_port(port: str) -> int:
    """Decimal port, or a service name looked up in the local services database."""
    if port.isascii() and port.isdigit():
        return parse_port(port)
    if not port:
        raise ValueError("missing port")
    try:
        return socket.getservbyname(port, "tcp")
    except OSError as e:
        raise ValueError(f"unknown port {port!r}") from e
