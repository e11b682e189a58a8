"""paramiko Transport with the OpenSSH streamlocal extension.

paramiko only knows how to open direct-tcpip channels; connecting to a unix
socket on the far side needs a direct-streamlocal@openssh.com channel, whose
open request carries the socket path.
"""

import threading
import time
from typing import Optional, Sequence

import paramiko
from paramiko.channel import Channel
from paramiko.common import cMSG_CHANNEL_OPEN
from paramiko.message import Message

STREAMLOCAL_CHANNEL = "direct-streamlocal@openssh.com"


class ViaTransport(paramiko.Transport):
    """Transport for one hop of the chain."""

    def prefer_host_key_types(self, key_types: Sequence[str]) -> None:
        """Negotiate the given host key types ahead of paramiko's defaults.

        Must be called before start_client(). Types paramiko does not
        support are skipped.
        """
        options = self.get_security_options()
        available = list(options.key_types)
        preferred = [t for t in dict.fromkeys(key_types) if t in available]
        if preferred:
            options.key_types = preferred + [t for t in available if t not in preferred]

    def open_streamlocal_channel(self, socket_path: str, timeout: Optional[float] = None) -> Channel:
        """Open a channel to a unix socket on the remote host.

        Mirrors Transport.open_channel, which cannot add the streamlocal
        request fields (socket path, reserved string, reserved uint32).

        Raises:
            paramiko.ChannelException: If the remote side refuses the channel
            paramiko.SSHException: If the session is gone or the open times out
        """
        if not self.active:
            raise paramiko.SSHException("SSH session not active")
        timeout = self.channel_timeout if timeout is None else timeout

        with self.lock:
            window_size = self._sanitize_window_size(None)
            max_packet_size = self._sanitize_packet_size(None)
            chanid = self._next_channel()
            m = Message()
            m.add_byte(cMSG_CHANNEL_OPEN)
            m.add_string(STREAMLOCAL_CHANNEL)
            m.add_int(chanid)
            m.add_int(window_size)
            m.add_int(max_packet_size)
            m.add_string(socket_path)
            m.add_string("")
            m.add_int(0)
            chan = Channel(chanid)
            self._channels.put(chanid, chan)
            self.channel_events[chanid] = event = threading.Event()
            self.channels_seen[chanid] = True
            chan._set_transport(self)
            chan._set_window(window_size, max_packet_size)
        self._send_user_message(m)

        start = time.time()
        while True:
            event.wait(0.1)
            if not self.active:
                raise self.get_exception() or paramiko.SSHException("Unable to open channel.")
            if event.is_set():
                break
            if start + timeout < time.time():
                raise paramiko.SSHException("Timeout opening channel.")

        chan = self._channels.get(chanid)
        if chan is not None:
            return chan
        raise self.get_exception() or paramiko.SSHException("Unable to open channel.")
