"""
Minimal Internet Relay Chat (IRC) protocol client.

This module connects to a single IRC server, registers, and hands every
line the server sends to the caller, one at a time, in order.

The main features are:

  * Plaintext or TLS connections.
  * Registration (NICK/USER), NickServ identification and a default
    channel join, in that order, on connect.
  * Handles server PONGing transparently.
  * A best guess at the nick the server actually assigned.
  * Lines are read by a single background thread and delivered through
    a bounded stream, so an unread connection can't grow without bound.

There is deliberately no parsing of IRC messages beyond what is needed
for the above; lines are delivered as plain strings.

Here is an example:

    session = minirc.client.Session(
        "irc.example.org", 6697, ssl=True,
        nick="jbond", username="james", realname="James Bond",
        channel="#mi5", pongs=True,
    )
    session.connect()
    for line in session.lines:
        print(line)
    print("disconnected:", session.errors.get_nowait())

Configuration lives in plain attributes on the Session and is read each
time an operation runs. Changing it from one thread while another thread
is using the Session is the caller's problem; nothing here locks it.
"""

import logging
import queue
import random
import threading

from more_itertools import first

from . import connection
from .connection import (  # noqa: F401
    IRCError,
    TransportError,
    TransportReadError,
    EndOfStream,
    ClosedLocally,
    TransportWriteError,
    InvalidCharacters,
)

log = logging.getLogger(__name__)


class ConnectError(IRCError):
    "Couldn't establish the connection to the server"


class HandshakeError(IRCError):
    """
    A registration step failed.

    ``step`` is one of 'identify', 'authenticate' or 'join'.
    """

    def __init__(self, step, message):
        super().__init__(message)
        self.step = step


class NotConnectedError(TransportWriteError):
    pass


class StreamClosed(Exception):
    "The line stream was closed and holds no more lines"


class LineStream:
    """
    A bounded, closable hand-off of lines from one producer thread to
    consumers.

    ``put`` blocks while the stream is full. Once the producer calls
    ``close``, consumers drain what is left and then see the end of the
    stream.

    >>> stream = LineStream(maxsize=2)
    >>> stream.put('PING :a')
    >>> stream.close()
    >>> list(stream)
    ['PING :a']
    >>> stream.get()
    Traceback (most recent call last):
    ...
    minirc.client.StreamClosed
    """

    _end = object()

    def __init__(self, maxsize=1):
        self._queue = queue.Queue(maxsize)
        self._lock = threading.Lock()
        self.closed = False

    def put(self, line):
        if self.closed:
            raise ValueError("put to closed stream")
        self._queue.put(line)

    def close(self):
        """
        Mark the end of the stream. Only the producer may call this, and
        only once.
        """
        with self._lock:
            if self.closed:
                raise ValueError("stream already closed")
            self.closed = True
        self._queue.put(self._end)

    def get(self, timeout=None):
        """
        Return the next line, blocking up to ``timeout`` seconds (forever
        if None).

        Raises StreamClosed at the end of the stream and queue.Empty on
        timeout.
        """
        line = self._queue.get(timeout=timeout)
        if line is self._end:
            # leave the marker for any other consumer
            self._queue.put(line)
            raise StreamClosed()
        return line

    def __iter__(self):
        while True:
            try:
                yield self.get()
            except StreamClosed:
                return


def _log_line(prefix, line):
    log.info("%s %s", prefix, line)


class Session:
    """
    A connection to one IRC server.

    Construct with the server and identity, adjust any of the other
    attributes, then call ``connect``. Lines from the server are then
    available by iterating over ``lines``. When that ends, ``errors``
    holds the reason.

    Arguments:

    * host - Server name
    * port - Port number
    * ssl - Use TLS
    * server_hostname - Name to verify on the server's certificate;
      defaults to ``host`` when ``ssl`` is set
    * nick - The nickname
    * username - The username
    * realname - The IRC name ("realname")

    Any other attribute below may also be given as a keyword argument.

    To bind a local address or dial over IPv6, pass a configured
    ``connection.Factory`` as ``connect_factory``:

    .. code-block:: python

       Session(
           'irc.example.org', 6667,
           connect_factory=connection.Factory(ipv6=True),
       )

    A Session is good for one connection only.
    """

    max_line_length = 467
    """
    Size of an IRC message, used for ``privmsg_size``. 510 should be it
    but 467 was found to be safe in practice.
    """

    transport_class = connection.LineTransport
    stream_class = LineStream

    sink = staticmethod(_log_line)
    """
    Called with (prefix, line) to log sent and received lines when
    ``tx_prefix`` or ``rx_prefix`` is set.
    """

    id_nick = ''
    id_password = ''
    channel = ''
    channel_password = ''
    tx_prefix = ''
    rx_prefix = ''
    pongs = False
    random_suffix = False
    quit_message = ''
    default_target = ''
    connect_factory = None

    options = (
        'id_nick',
        'id_password',
        'channel',
        'channel_password',
        'tx_prefix',
        'rx_prefix',
        'pongs',
        'random_suffix',
        'quit_message',
        'default_target',
        'max_line_length',
        'connect_factory',
        'sink',
    )
    "attributes that may also be given as keyword arguments"

    socket = None
    transport = None

    def __init__(
        self,
        host,
        port,
        ssl=False,
        server_hostname=None,
        nick='',
        username='',
        realname='',
        **config
    ):
        self.host = host
        self.port = port
        self.ssl = ssl
        if ssl and not server_hostname:
            server_hostname = host
        self.server_hostname = server_hostname
        self.nick = nick
        self.username = username
        self.realname = realname
        unknown = set(config) - set(self.options)
        if unknown:
            names = ", ".join(sorted(unknown))
            raise TypeError("unexpected keyword arguments: %s" % names)
        vars(self).update(config)

        self.rng = random.Random()
        self.lines = self.stream_class()
        self.errors = queue.Queue(1)
        self._observed_nick = None
        self._reader = None

    def __repr__(self):
        return "<%s %s:%s %s>" % (
            type(self).__name__,
            self.host,
            self.port,
            "ssl" if self.ssl else "plaintext",
        )

    @property
    def observed_nick(self):
        """
        A guess at what the server thinks our nick is, or None.

        Handy when ``random_suffix`` is set and the server truncates nicks.
        It's inferred from numeric replies as they're read, so it's only
        as current as the last line consumed from ``lines``.
        """
        return self._observed_nick

    def connect(self, connect_factory=None):
        """
        Connect to the server, register, and start reading lines.

        * connect_factory - A callable that takes the server address and
          returns a connected socket. Defaults to the ``connect_factory``
          attribute, or a plaintext or TLS factory per ``ssl``.

        Raises ConnectError if the server can't be reached and
        HandshakeError if registration fails. In the latter case the
        connection is left open; call ``close`` to drop it.
        """
        log.debug(
            "connect(host=%r, port=%r, ssl=%r, nick=%r)",
            self.host,
            self.port,
            self.ssl,
            self.nick,
        )
        factory = connect_factory or self.connect_factory or self._default_factory()
        server_address = (self.host, self.port)
        try:
            self.socket = factory(server_address)
        except (OSError, ValueError) as exc:
            # ValueError covers names IDNA can't encode
            kind = "ssl" if self.ssl else "plaintext"
            tmpl = "unable to make %s connection to %s:%s: %s"
            raise ConnectError(tmpl % (kind, self.host, self.port, exc)) from exc

        self.transport = self.transport_class(self.socket)

        self.handshake()

        self._reader = threading.Thread(
            target=self._read_loop,
            name="minirc-reader-%s:%s" % server_address,
            daemon=True,
        )
        self._reader.start()

    def _default_factory(self):
        return connection.Factory.from_params(
            ssl=self.ssl, server_hostname=self.server_hostname
        )

    def handshake(self):
        """
        Identify, authenticate to NickServ, and join the default channel,
        in that order, stopping at the first failure.
        """
        self.identify()
        self.authenticate()
        self.join()

    def identify(self):
        """
        Send NICK and USER, then a bare NICK so the server replies with
        the nick as it knows it.

        Does nothing unless nick, username and realname are all set.
        """
        if not (self.nick and self.username and self.realname):
            return
        nick = self.nick
        if self.random_suffix:
            nick = '%s-%d' % (nick, self.rng.randrange(2**63))
        lines = [
            'NICK :%s' % nick,
            'USER %s x x :%s' % (self.username, self.realname),
            'NICK',
        ]
        for line in lines:
            try:
                self.send_line(line)
            except TransportWriteError as exc:
                msg = "error sending identify line %s: %s" % (line, exc)
                raise HandshakeError('identify', msg) from exc

    def authenticate(self):
        """
        Identify to NickServ. Does nothing unless both ``id_nick`` and
        ``id_password`` are set.
        """
        if not (self.id_nick and self.id_password):
            return
        try:
            self.send_line(
                'PRIVMSG NickServ :identify %s %s' % (self.id_nick, self.id_password)
            )
        except TransportWriteError as exc:
            msg = "error authenticating to services: %s" % exc
            raise HandshakeError('authenticate', msg) from exc

    def join(self, channel='', password=''):
        """
        Join ``channel`` with the optional ``password``.

        If channel is empty, ``self.channel`` and ``self.channel_password``
        are used instead. If that's empty too, nothing is sent.
        """
        if not channel:
            channel = self.channel
            password = self.channel_password
        if not channel:
            return
        try:
            self.send_line('JOIN %s %s' % (channel, password))
        except TransportWriteError as exc:
            msg = "error joining %s: %s" % (channel, exc)
            raise HandshakeError('join', msg) from exc

    def send_line(self, fmt, *args):
        """
        Send a raw protocol line to the server.

        If args are given, the line is ``fmt % args``; otherwise ``fmt`` is
        sent as is. Every other sending method goes through here. If
        ``tx_prefix`` is set, lines are logged through ``sink`` once sent.
        """
        line = fmt % args if args else fmt
        if self.transport is None:
            raise NotConnectedError("Not connected.")
        self.transport.write_line(line)
        if self.tx_prefix:
            self.sink(self.tx_prefix, line)

    def _resolve_target(self, target):
        return first(filter(None, (target, self.default_target, self.channel)), '')

    def privmsg(self, message, target=''):
        """
        Send a PRIVMSG to ``target``, a nick or a channel.

        If target is empty, ``default_target`` is used, then ``channel``.
        If all are empty, nothing is sent.
        """
        target = self._resolve_target(target)
        if not target:
            return
        self.send_line('PRIVMSG %s :%s' % (target, message))

    def privmsg_size(self, target=''):
        """
        Return how many bytes of message fit in a PRIVMSG to ``target``
        (resolved as for ``privmsg``), or -1 if there's no target.

        >>> Session('irc.example.org', 6667).privmsg_size('#mi5')
        453
        >>> Session('irc.example.org', 6667).privmsg_size()
        -1
        """
        target = self._resolve_target(target)
        if not target:
            return -1
        prefix = 'PRIVMSG %s :' % target
        encoding = self.transport_class.transmit_encoding
        return self.max_line_length - len(prefix.encode(encoding))

    def quit(self, message=''):
        """
        Send QUIT with the optional message, falling back to
        ``quit_message``, and close the connection if that worked.

        The line stream ends shortly after, once the reader notices.
        """
        message = message or self.quit_message
        line = 'QUIT :%s' % message if message else 'QUIT'
        self.send_line(line)
        self.close()

    def close(self):
        """
        Close the connection without saying goodbye.

        Any blocked read fails, so the line stream ends with ClosedLocally.
        """
        if self.transport is not None:
            self.transport.close()

    def _read_loop(self):
        "Read, answer PINGs, watch for our nick, and deliver lines"
        try:
            while True:
                line = self.transport.read_line()
                self._process_line(line)
                self.lines.put(line)
        except TransportError as exc:
            log.debug("reader stopped: %r", exc)
            self.errors.put(exc)
        except Exception as exc:
            log.exception("reader failed")
            self.transport.close()
            self.errors.put(exc)
        finally:
            self.lines.close()

    def _process_line(self, line):
        if self.rx_prefix:
            self.sink(self.rx_prefix, line)

        if self.pongs and line.lower().startswith('ping '):
            # failure to pong is as bad as failure to read
            self.send_line('PONG %s' % line.split(' ', 1)[1])

        self._observe_nick(line)

    def _observe_nick(self, line):
        """
        A numeric reply names our nick as its first parameter.

        >>> session = Session('irc.example.org', 6667)
        >>> session._observe_nick(':irc.example.org 001 bond-42 :Welcome')
        >>> session.observed_nick
        'bond-42'
        >>> session._observe_nick(':irc.example.org NOTICE bond :hi')
        >>> session.observed_nick
        'bond-42'
        """
        parts = line.split(None, 3)
        if len(parts) != 4:
            return
        code = parts[1]
        if len(code) == 3 and code.isdigit():
            self._observed_nick = parts[2]
