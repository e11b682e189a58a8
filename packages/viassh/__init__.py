"""viassh: tunnel connections through one or more SSH hosts.

Every via host (user@host:port) is logged in to with the keys of the local
ssh-agent, each one reached through the previous host's tunnel. The resulting
Dialer opens connections from the last host as if dialing directly.
"""

from .chain import ChainBuilder, Dialer, build, create_dialer
from .config import ViaConfig, get_config
from .exceptions import (
    AuthenticationError,
    CloseError,
    ConfigurationError,
    CredentialSourceError,
    DialerClosedError,
    HopCloseError,
    HopDialError,
    HostKeyError,
    HostParseError,
    NoHostsError,
    RemoteDialError,
    ViaSSHError,
)
from .models import DialerState, HopDescriptor, parse_hop, parse_hops

__version__ = "1.0.0"
