import queue
import socket
import threading

import pytest

import minirc.client


class FakeServer:
    """
    The server end of a connection, driven line by line from a test.
    """

    def __init__(self, sock, timeout=5):
        sock.settimeout(timeout)
        self.sock = sock
        self.file = sock.makefile('rb')

    def send(self, *lines):
        for line in lines:
            self.sock.sendall(line.encode('utf-8') + b'\r\n')

    def read_line(self):
        data = self.file.readline()
        if not data:
            raise EOFError()
        return data.rstrip(b'\r\n').decode('utf-8')

    def read_lines(self, count):
        return [self.read_line() for _ in range(count)]

    def close(self):
        self.file.close()
        self.sock.close()


@pytest.fixture
def server_pair():
    """
    A connected (client socket, FakeServer) pair.
    """
    client_sock, server_sock = socket.socketpair()
    server = FakeServer(server_sock)
    try:
        yield client_sock, server
    finally:
        server.close()
        client_sock.close()


@pytest.fixture
def make_session(server_pair):
    """
    Build a Session wired to the fake server instead of the network.
    """
    client_sock, server = server_pair

    def make(**config):
        config.setdefault('connect_factory', lambda address: client_sock)
        return minirc.client.Session('irc.example.org', 6667, **config)

    return make


@pytest.fixture
def fake_server(server_pair):
    client_sock, server = server_pair
    return server


class Listener:
    """
    A loopback TCP listener that hands each accepted connection to the
    test as a FakeServer.
    """

    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(('127.0.0.1', 0))
        self.sock.listen(1)
        self.address = self.sock.getsockname()
        self.accepted = queue.Queue()
        self.servers = []
        threading.Thread(target=self._accept, daemon=True).start()

    def _accept(self):
        try:
            conn, addr = self.sock.accept()
        except OSError:
            return
        self.accepted.put(FakeServer(conn))

    def next_server(self, timeout=5):
        server = self.accepted.get(timeout=timeout)
        self.servers.append(server)
        return server

    def close(self):
        for server in self.servers:
            server.close()
        self.sock.close()


@pytest.fixture
def listener():
    srv = Listener()
    try:
        yield srv
    finally:
        srv.close()


@pytest.fixture
def unused_address():
    """
    A loopback address nothing is listening on.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    address = sock.getsockname()
    sock.close()
    return address
