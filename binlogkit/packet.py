"""Framing of client/server protocol packets over a socket."""

from __future__ import annotations

import io
import socket
from typing import BinaryIO

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from binlogkit.constants import MAX_PAYLOAD_LEN

_COPY_CHUNK = 16 * 1024
_READ_BUFFER = 64 * 1024
_REQUEST_PUBLIC_KEY = 2


class BadConnectionError(ConnectionError):
    """The connection broke while a packet was being read or written."""


class Conn:
    """A socket speaking length-prefixed, sequence-numbered packets.

    Each packet has a 3-byte little-endian length and a 1-byte sequence
    number; payloads of ``MAX_PAYLOAD_LEN`` bytes or more are split.
    """

    def __init__(self, sock: socket.socket, buffered: bool = True) -> None:
        self.sock = sock
        self.sequence = 0
        # An unbuffered reader is needed before a TLS handshake, which must
        # see bytes that a buffer would already have consumed.
        self._reader: BinaryIO | None = (
            sock.makefile("rb", buffering=_READ_BUFFER) if buffered else None
        )

    def _read(self, n: int) -> bytes:
        if self._reader is not None:
            return self._reader.read(n)
        parts = []
        remaining = n
        while remaining > 0:
            chunk = self.sock.recv(remaining)
            if not chunk:
                break
            parts.append(chunk)
            remaining -= len(chunk)
        return b"".join(parts)

    def read_packet(self) -> bytes:
        """Read one logical packet, joining split parts, and return its payload."""
        buf = io.BytesIO()
        self.read_packet_to(buf)
        return buf.getvalue()

    def read_packet_to(self, writer) -> None:
        """Read one logical packet and write its payload to ``writer``."""
        while True:
            try:
                header = self._read(4)
            except OSError as exc:
                raise BadConnectionError(f"reading header failed: {exc}") from exc
            if len(header) < 4:
                raise BadConnectionError(
                    f"reading header failed: got {len(header)} of 4 bytes"
                )

            length = int.from_bytes(header[:3], "little")
            sequence = header[3]
            if sequence != self.sequence:
                raise ValueError(f"invalid sequence {sequence} != {self.sequence}")
            self.sequence = (self.sequence + 1) & 0xFF

            copied = 0
            while copied < length:
                wanted = min(_COPY_CHUNK, length - copied)
                try:
                    chunk = self._read(wanted)
                except OSError as exc:
                    raise BadConnectionError(
                        f"reading payload failed: {exc}, copied {copied}, expected {length}"
                    ) from exc
                if len(chunk) < wanted:
                    raise BadConnectionError(
                        f"reading payload failed: {copied + len(chunk)} bytes copied, "
                        f"while {length} expected"
                    )
                writer.write(chunk)
                copied += wanted

            if length < MAX_PAYLOAD_LEN:
                return

    def _send(self, frame: bytes) -> None:
        try:
            self.sock.sendall(frame)
        except OSError as exc:
            raise BadConnectionError(f"write failed: {exc}") from exc
        self.sequence = (self.sequence + 1) & 0xFF

    def write_packet(self, data: bytes) -> None:
        """Send ``data`` as a packet; its first four bytes are reserved for the header."""
        payload = memoryview(bytes(data))[4:]
        while len(payload) >= MAX_PAYLOAD_LEN:
            self._send(b"\xff\xff\xff" + bytes([self.sequence]) + payload[:MAX_PAYLOAD_LEN])
            payload = payload[MAX_PAYLOAD_LEN:]
        header = len(payload).to_bytes(3, "little") + bytes([self.sequence])
        self._send(header + payload)

    def write_clear_auth_packet(self, password: str) -> None:
        """Send the password in clear text, NUL-terminated."""
        self.write_packet(b"\0" * 4 + password.encode() + b"\0")

    def write_public_key_auth_packet(self, password: str, cipher: bytes) -> None:
        """Request the server's RSA key and send the password encrypted with it.

        The NUL-terminated password is XOR-ed with ``cipher`` (the scramble)
        and encrypted with RSA-OAEP using SHA-1.
        """
        self.write_packet(b"\0" * 4 + bytes([_REQUEST_PUBLIC_KEY]))
        data = self.read_packet()
        try:
            public_key = serialization.load_pem_public_key(data[1:])
        except ValueError as exc:
            raise ValueError(f"parsing public key failed: {exc}") from exc
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise ValueError("server public key is not an RSA key")
        if not cipher:
            raise ValueError("scramble must not be empty")

        plain = password.encode() + b"\0"
        mixed = bytes(b ^ cipher[i % len(cipher)] for i, b in enumerate(plain))
        encrypted = public_key.encrypt(
            mixed,
            padding.OAEP(
                mgf=padding.MGF1(algorithm=hashes.SHA1()),
                algorithm=hashes.SHA1(),
                label=None,
            ),
        )
        self.write_packet(b"\0" * 4 + encrypted)

    def write_auth_switch_packet(self, auth_data: bytes, add_nul: bool) -> None:
        """Send an auth switch response, optionally NUL-terminated."""
        self.write_packet(b"\0" * 4 + bytes(auth_data) + (b"\0" if add_nul else b""))

    def reset_sequence(self) -> None:
        self.sequence = 0

    def close(self) -> None:
        """Reset the sequence and close the socket."""
        self.sequence = 0
        if self._reader is not None:
            self._reader.close()
        self.sock.close()


__all__ = ["BadConnectionError", "Conn"]