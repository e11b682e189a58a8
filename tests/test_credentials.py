"""Unit tests for credential sources."""

import os
import socket
import struct
import sys
import tempfile
import threading
from pathlib import Path

import paramiko
import pytest

# Add packages to path
sys.path.insert(0, str(Path(__file__).parent.parent / "packages"))

from viassh.credentials import (
    AgentCredentialSource,
    KeyFileCredentialSource,
    open_credential_source,
)
from viassh.exceptions import CredentialSourceError


SSH2_AGENTC_REQUEST_IDENTITIES = 11
SSH2_AGENT_IDENTITIES_ANSWER = 12


def _recv_exact(conn, n):
    data = b""
    while len(data) < n:
        chunk = conn.recv(n - len(data))
        if not chunk:
            raise EOFError
        data += chunk
    return data


@pytest.fixture
def agent_socket():
    """A minimal ssh-agent answering identity requests with one key."""
    key = paramiko.ECDSAKey.generate()
    blob = key.asbytes()
    comment = b"test@viassh"

    tmpdir = tempfile.mkdtemp()
    path = os.path.join(tmpdir, "agent.sock")
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    server.bind(path)
    server.listen(1)

    def serve():
        conn, _ = server.accept()
        with conn:
            try:
                while True:
                    length = struct.unpack(">I", _recv_exact(conn, 4))[0]
                    request = _recv_exact(conn, length)
                    assert request[0] == SSH2_AGENTC_REQUEST_IDENTITIES
                    body = (
                        bytes([SSH2_AGENT_IDENTITIES_ANSWER])
                        + struct.pack(">I", 1)
                        + struct.pack(">I", len(blob)) + blob
                        + struct.pack(">I", len(comment)) + comment
                    )
                    conn.sendall(struct.pack(">I", len(body)) + body)
            except EOFError:
                pass

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield path, key
    server.close()
    thread.join(timeout=2)
    os.unlink(path)
    os.rmdir(tmpdir)


class TestAgentCredentialSource:
    """Tests for the ssh-agent credential source."""

    def test_missing_env(self, monkeypatch):
        monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
        with pytest.raises(CredentialSourceError, match="SSH_AUTH_SOCK"):
            AgentCredentialSource()

    def test_unreachable_socket(self, tmp_path):
        path = str(tmp_path / "nope.sock")
        with pytest.raises(CredentialSourceError) as exc_info:
            AgentCredentialSource(path)
        assert isinstance(exc_info.value.cause, OSError)
        assert exc_info.value.__cause__ is exc_info.value.cause

    def test_lists_agent_keys(self, agent_socket):
        path, key = agent_socket
        source = AgentCredentialSource(path)
        try:
            signers = source.signers("alice")
            assert len(signers) == 1
            assert signers[0].asbytes() == key.asbytes()
        finally:
            source.close()

    def test_env_socket(self, agent_socket, monkeypatch):
        path, _ = agent_socket
        monkeypatch.setenv("SSH_AUTH_SOCK", path)
        source = open_credential_source()
        try:
            assert isinstance(source, AgentCredentialSource)
            assert source.socket_path == path
        finally:
            source.close()


class TestKeyFileCredentialSource:
    """Tests for the key file credential source."""

    def test_loads_keys(self, tmp_path):
        key = paramiko.ECDSAKey.generate()
        path = tmp_path / "id_ecdsa"
        key.write_private_key_file(str(path))

        source = KeyFileCredentialSource([path])
        signers = source.signers("alice")
        assert len(signers) == 1
        assert signers[0].asbytes() == key.asbytes()

    def test_encrypted_key_with_passphrase(self, tmp_path):
        key = paramiko.ECDSAKey.generate()
        path = tmp_path / "id_ecdsa"
        key.write_private_key_file(str(path), password="hunter2")

        source = KeyFileCredentialSource([path], passphrase="hunter2")
        assert source.signers("alice")[0].asbytes() == key.asbytes()

    def test_encrypted_key_without_passphrase(self, tmp_path):
        key = paramiko.ECDSAKey.generate()
        path = tmp_path / "id_ecdsa"
        key.write_private_key_file(str(path), password="hunter2")

        with pytest.raises(CredentialSourceError):
            KeyFileCredentialSource([path])

    def test_missing_file(self, tmp_path):
        with pytest.raises(CredentialSourceError) as exc_info:
            KeyFileCredentialSource([tmp_path / "missing"])
        assert isinstance(exc_info.value.cause, OSError)

    def test_garbage_file(self, tmp_path):
        path = tmp_path / "id_garbage"
        path.write_text("not a key\n")
        with pytest.raises(CredentialSourceError):
            KeyFileCredentialSource([path])

    def test_no_paths(self):
        with pytest.raises(CredentialSourceError):
            KeyFileCredentialSource([])

    def test_key_files_preferred_over_agent(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
        path = tmp_path / "id_ecdsa"
        paramiko.ECDSAKey.generate().write_private_key_file(str(path))

        source = open_credential_source(key_files=[path])
        assert isinstance(source, KeyFileCredentialSource)
