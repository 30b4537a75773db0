"""
Watch an IRC server from the command line.

Connects, registers, optionally joins a channel, and prints every line
the server sends until the connection ends. With ``--match``, only
lines matching the pattern are printed; if it has two groups they are
printed as ``sender: message``.

    python -m minirc.watch irc.example.org jbond --channel '#mi5' \\
        --match ':(\\S+) PRIVMSG #mi5 :SECRET MESSAGE: (.*)'
"""

import argparse
import logging
import queue
import re

import jaraco.logging

from . import client

log = logging.getLogger(__name__)


def get_args(args=None):
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument('server')
    parser.add_argument('nickname')
    parser.add_argument('-p', '--port', default=6667, type=int)
    parser.add_argument('--ssl', action='store_true', help="connect with TLS")
    parser.add_argument(
        '--server-hostname', help="name to verify on the certificate (default: server)"
    )
    parser.add_argument('--username', help="default: nickname")
    parser.add_argument('--realname', help="default: nickname")
    parser.add_argument('--channel', default='')
    parser.add_argument('--channel-password', default='')
    parser.add_argument('--id-nick', default='', help="NickServ account")
    parser.add_argument('--id-password', default='', help="NickServ password")
    parser.add_argument(
        '--random-suffix',
        action='store_true',
        help="append a random number to the nickname",
    )
    parser.add_argument(
        '--no-pongs',
        dest='pongs',
        action='store_false',
        help="don't answer server PINGs",
    )
    parser.add_argument('--rx-prefix', default='', help="log received lines")
    parser.add_argument('--tx-prefix', default='', help="log sent lines")
    parser.add_argument('--quit-message', default='')
    parser.add_argument('--match', type=re.compile, help="only print matching lines")
    jaraco.logging.add_arguments(parser)
    return parser.parse_args(args)


def session_from_args(args):
    return client.Session(
        args.server,
        args.port,
        ssl=args.ssl,
        server_hostname=args.server_hostname,
        nick=args.nickname,
        username=args.username or args.nickname,
        realname=args.realname or args.nickname,
        id_nick=args.id_nick,
        id_password=args.id_password,
        channel=args.channel,
        channel_password=args.channel_password,
        pongs=args.pongs,
        random_suffix=args.random_suffix,
        rx_prefix=args.rx_prefix,
        tx_prefix=args.tx_prefix,
        quit_message=args.quit_message,
    )


def render(line, pattern=None):
    """
    Return what to print for ``line``, or None to skip it.

    >>> pat = re.compile(r':(\\S+) PRIVMSG #mi5 :SECRET MESSAGE: (.*)')
    >>> render(':q!q@mi5 PRIVMSG #mi5 :SECRET MESSAGE: shaken', pat)
    'q!q@mi5: shaken'
    >>> render(':q!q@mi5 PRIVMSG #mi5 :hello', pat)
    >>> render('PING :irc.example.org')
    'PING :irc.example.org'
    """
    if pattern is None:
        return line
    match = pattern.search(line)
    if not match:
        return None
    groups = match.groups()
    if len(groups) == 2:
        return '%s: %s' % groups
    return line


def watch(session, pattern=None, out=None):
    """
    Print lines from a connected session until the stream ends.

    Returns the exit status: 0 if we closed the connection ourselves,
    1 otherwise.
    """
    for line in session.lines:
        text = render(line, pattern)
        if text is not None:
            print(text, file=out)
    try:
        err = session.errors.get_nowait()
    except queue.Empty:
        return 1
    if isinstance(err, client.ClosedLocally):
        return 0
    print("Error reading from server: %s" % err, file=out)
    return 1


def main():
    args = get_args()
    jaraco.logging.setup(args)

    session = session_from_args(args)
    try:
        session.connect()
    except client.IRCError as exc:
        print("Failed to connect to server: %s" % exc)
        session.close()
        raise SystemExit(1)
    log.info("Connected to %s:%s", args.server, args.port)

    try:
        status = watch(session, args.match)
    except KeyboardInterrupt:
        try:
            session.quit()
        except client.TransportWriteError:
            session.close()
        status = 0
    raise SystemExit(status)


if __name__ == '__main__':
    main()
