import collections
import contextlib
import functools
import logging
import socket
import ssl
import threading

from jaraco.stream import buffer

log = logging.getLogger(__name__)


class IRCError(Exception):
    "An IRC exception"


class TransportError(IRCError):
    "The line transport failed"


class TransportReadError(TransportError):
    "Reading a line from the server failed"


class EndOfStream(TransportReadError):
    "The server closed the connection"


class ClosedLocally(TransportReadError):
    "The transport was closed from this side"


class TransportWriteError(TransportError):
    "Writing a line to the server failed"


class InvalidCharacters(TransportWriteError, ValueError):
    "Invalid characters were encountered in the message"


def identity(x):
    return x


class Factory:
    """
    A class for creating custom socket connections.

    To create a simple connection:

    .. code-block:: python

       server_address = ('localhost', 6667)
       Factory()(server_address)

    To create a TLS connection verifying the server's certificate:

    .. code-block:: python

       Factory.from_params(ssl=True, server_hostname='irc.example.org')

    To create an IPv6 connection:

    .. code-block:: python

       Factory(ipv6=True)(server_address)

    Note that Factory doesn't save the state of the socket itself. The
    caller must do that, as necessary. As a result, the Factory may be
    re-used to create new connections with the same settings.
    """

    family = socket.AF_INET

    def __init__(self, bind_address=None, wrapper=identity, ipv6=False):
        self.bind_address = bind_address
        self.wrapper = wrapper
        if ipv6:
            self.family = socket.AF_INET6

    @classmethod
    def from_params(cls, ssl=False, server_hostname=None, **kwargs):
        """
        Construct a factory for plaintext or, when ``ssl`` is set, TLS
        connections verifying ``server_hostname``.

        >>> Factory.from_params().wrapper is identity
        True
        >>> Factory.from_params(ssl=True, server_hostname='irc.example.org').wrapper
        functools.partial(...)
        """
        if not ssl:
            return cls(**kwargs)
        return cls(wrapper=tls_wrapper(server_hostname), **kwargs)

    def connect(self, server_address):
        sock = self.wrapper(socket.socket(self.family, socket.SOCK_STREAM))
        self.bind_address and sock.bind(self.bind_address)
        try:
            sock.connect(server_address)
        except Exception:
            sock.close()
            raise
        return sock

    __call__ = connect


def tls_wrapper(server_hostname):
    """
    Return a socket wrapper that negotiates TLS on connect and verifies
    the peer certificate against ``server_hostname``.
    """
    context = ssl.create_default_context()
    return functools.partial(context.wrap_socket, server_hostname=server_hostname)


class LineTransport:
    """
    Line-oriented framing over a connected socket.

    Each call to ``read_line`` returns exactly one line received from the
    peer, without its terminator. Each call to ``write_line`` sends exactly
    one line with CR LF appended. The transport knows nothing of IRC.

    Writes are serialized, so the transport may be shared between a
    reading thread and any number of writing threads. Reads must only
    happen on one thread.
    """

    buffer_class = buffer.LenientDecodingLineBuffer
    transmit_encoding = 'utf-8'
    "encoding used for transmission"

    chunk_size = 2**14

    def __init__(self, sock):
        self.socket = sock
        self.buffer = self.buffer_class()
        self.pending = collections.deque()
        self.closed = False
        self._write_lock = threading.Lock()

    def read_line(self):
        """
        Block until a full line is available and return it.

        Raises EndOfStream when the peer hangs up, ClosedLocally when
        ``close`` was called, and TransportReadError for anything else.
        """
        while not self.pending:
            self._fill()
        line = self.pending.popleft()
        log.debug("FROM SERVER: %s", line)
        return line

    def _fill(self):
        reader = getattr(self.socket, 'read', self.socket.recv)
        try:
            new_data = reader(self.chunk_size)
        except (OSError, ValueError) as exc:
            if self.closed:
                raise ClosedLocally("connection closed") from exc
            raise TransportReadError("error reading from server: %s" % exc) from exc
        if not new_data:
            if self.closed:
                raise ClosedLocally("connection closed")
            raise EndOfStream("connection closed by server")
        self.buffer.feed(new_data)
        self.pending.extend(self.buffer)

    def encode(self, msg):
        """Encode a message for transmission."""
        return msg.encode(self.transmit_encoding)

    def _prep_message(self, string):
        r"""
        Render a line as a frame ready for the wire.

        >>> LineTransport(None)._prep_message('PING :x')
        b'PING :x\r\n'
        >>> LineTransport(None)._prep_message('PING :x\r\nQUIT')
        Traceback (most recent call last):
        ...
        minirc.connection.InvalidCharacters: Line terminators not allowed in a line
        """
        # The string should not contain any line terminator other than the
        # one added here.
        if '\n' in string or '\r' in string:
            msg = "Line terminators not allowed in a line"
            raise InvalidCharacters(msg)
        return self.encode(string) + b'\r\n'

    def write_line(self, line):
        """
        Send one line, padded with CR LF, before returning.
        """
        frame = self._prep_message(line)
        with self._write_lock:
            try:
                self.socket.sendall(frame)
            except (OSError, ValueError) as exc:
                raise TransportWriteError("error writing to server: %s" % exc) from exc
        log.debug("TO SERVER: %s", line)

    def close(self):
        """
        Close the connection.

        A thread blocked in ``read_line`` wakes up and gets ClosedLocally.
        Closing an already closed transport does nothing.
        """
        if self.closed:
            return
        self.closed = True
        log.debug("closing connection")
        with contextlib.suppress(OSError):
            self.socket.shutdown(socket.SHUT_RDWR)
        self.socket.close()
