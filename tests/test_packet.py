import socket
import threading

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from binlogkit.constants import MAX_PAYLOAD_LEN
from binlogkit.packet import BadConnectionError, Conn


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    a, b = Conn(left), Conn(right, buffered=False)
    yield a, b
    a.close()
    b.close()


def test_write_packet_wire_format(pair):
    a, _ = pair
    peer = a.sock
    _, raw_end = pair
    a.write_packet(b"\0\0\0\0abc")
    assert raw_end.sock.recv(16) == b"\x03\x00\x00\x00abc"
    assert a.sequence == 1
    assert peer is a.sock


def test_round_trip_and_sequence(pair):
    a, b = pair
    a.write_packet(b"\0\0\0\0hello")
    a.write_packet(b"\0\0\0\0")
    assert b.read_packet() == b"hello"
    assert b.read_packet() == b""
    assert a.sequence == b.sequence == 2


def test_sequence_mismatch(pair):
    a, b = pair
    a.write_packet(b"\0\0\0\0x")
    b.sequence = 5
    with pytest.raises(ValueError):
        b.read_packet()


def test_reset_sequence(pair):
    a, b = pair
    a.write_packet(b"\0\0\0\0x")
    b.read_packet()
    a.reset_sequence()
    b.reset_sequence()
    a.write_packet(b"\0\0\0\0y")
    assert b.read_packet() == b"y"
    assert b.sequence == 1


def test_short_header_is_bad_connection(pair):
    a, b = pair
    a.sock.sendall(b"\x05\x00")
    a.sock.shutdown(socket.SHUT_WR)
    with pytest.raises(BadConnectionError):
        b.read_packet()


def test_short_payload_is_bad_connection(pair):
    a, b = pair
    a.sock.sendall(b"\x05\x00\x00\x00ab")
    a.sock.shutdown(socket.SHUT_WR)
    with pytest.raises(BadConnectionError):
        b.read_packet()


def test_large_payload_is_split_and_joined(pair):
    a, b = pair
    payload = bytes(range(256)) * ((MAX_PAYLOAD_LEN + 300) // 256)
    assert len(payload) >= MAX_PAYLOAD_LEN

    writer = threading.Thread(target=a.write_packet, args=(b"\0\0\0\0" + payload,))
    writer.start()
    received = b.read_packet()
    writer.join()
    assert received == payload
    assert a.sequence == b.sequence == 2


def test_clear_auth_packet(pair):
    a, b = pair
    password = "password"
    a.write_clear_auth_packet(password)
    assert b.read_packet() == password.encode() + b"\0"


@pytest.mark.parametrize("add_nul", [True, False])
def test_auth_switch_packet(pair, add_nul):
    a, b = pair
    a.write_auth_switch_packet(b"scramble", add_nul)
    expected = b"scramble" + (b"\0" if add_nul else b"")
    assert b.read_packet() == expected


def test_public_key_auth_packet(pair):
    client, server = pair
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = private_key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    cipher = b"0123456789abcdefghij"
    result = {}

    def serve():
        result["request"] = server.read_packet()
        server.write_packet(b"\0\0\0\0\x01" + pem)
        result["encrypted"] = server.read_packet()

    thread = threading.Thread(target=serve)
    thread.start()
    password = "password"
    client.write_public_key_auth_packet(password, cipher)
    thread.join()

    # request written, public key read, encrypted password written
    assert client.sequence == 3
    assert server.sequence == 3
    request = result["request"]
    encrypted = result["encrypted"]
    assert request == b"\x02"
    assert len(encrypted) == 256
    decrypted = private_key.decrypt(
        encrypted,
        padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA1()),
            algorithm=hashes.SHA1(),
            label=None,
        ),
    )
    unmixed = bytes(b ^ cipher[i % len(cipher)] for i, b in enumerate(decrypted))
    assert unmixed == password.encode() + b"\0"


def test_close_resets_sequence():
    left, right = socket.socketpair()
    conn = Conn(left)
    conn.write_packet(b"\0\0\0\0x")
    assert conn.sequence == 1
    conn.close()
    right.close()
    assert conn.sequence == 0
    assert left.fileno() == -1