import io
import re
import socket
from unittest import mock

import pytest

from minirc import client
from minirc import watch


def test_args_defaults():
    args = watch.get_args(['irc.example.org', 'jbond'])
    assert args.port == 6667
    assert args.pongs
    assert not args.ssl
    assert args.match is None

    session = watch.session_from_args(args)
    assert (session.host, session.port) == ('irc.example.org', 6667)
    assert session.nick == session.username == session.realname == 'jbond'
    assert session.pongs
    assert session.server_hostname is None


def test_args_all_options():
    args = watch.get_args(
        [
            'irc.example.org',
            'jbond',
            '-p',
            '7000',
            '--ssl',
            '--username',
            'james',
            '--realname',
            'James Bond',
            '--channel',
            '#mi5',
            '--id-nick',
            'jbond',
            '--id-password',
            'iloveturtles',
            '--random-suffix',
            '--no-pongs',
            '--match',
            r':(\S+) PRIVMSG #mi5 :SECRET MESSAGE: (.*)',
        ]
    )
    session = watch.session_from_args(args)
    assert session.port == 7000
    assert session.ssl
    assert session.server_hostname == 'irc.example.org'
    assert session.username == 'james'
    assert session.realname == 'James Bond'
    assert session.channel == '#mi5'
    assert (session.id_nick, session.id_password) == ('jbond', 'iloveturtles')
    assert session.random_suffix
    assert not session.pongs
    assert isinstance(args.match, re.Pattern)


def test_watch_reports_server_hangup(make_session, fake_server):
    session = make_session()
    session.connect()
    fake_server.send(':q!q@mi5 PRIVMSG #mi5 :SECRET MESSAGE: shaken', 'PING :x')
    fake_server.sock.shutdown(socket.SHUT_WR)
    out = io.StringIO()
    pattern = re.compile(r':(\S+) PRIVMSG #mi5 :SECRET MESSAGE: (.*)')
    assert watch.watch(session, pattern, out=out) == 1
    lines = out.getvalue().splitlines()
    assert lines[0] == 'q!q@mi5: shaken'
    assert lines[1].startswith('Error reading from server: ')
    assert len(lines) == 2


def test_watch_local_close_is_clean(make_session):
    session = make_session()
    session.connect()
    session.close()
    out = io.StringIO()
    assert watch.watch(session, out=out) == 0
    assert out.getvalue() == ''


def test_main_connect_failure(monkeypatch, unused_address, capsys):
    host, port = unused_address
    monkeypatch.setattr('sys.argv', ['watch', host, 'jbond', '-p', str(port)])
    with pytest.raises(SystemExit) as exc_info:
        watch.main()
    assert exc_info.value.code == 1
    assert 'Failed to connect to server' in capsys.readouterr().out


def test_main_watches_until_hangup(monkeypatch, listener, capsys):
    host, port = listener.address
    monkeypatch.setattr('sys.argv', ['watch', host, 'jbond', '-p', str(port)])
    monkeypatch.setattr(client.Session, 'connect', _connect_and_hang_up(listener))
    with pytest.raises(SystemExit) as exc_info:
        watch.main()
    assert exc_info.value.code == 1
    assert ':server 001 jbond :Welcome' in capsys.readouterr().out


def _connect_and_hang_up(listener):
    orig = client.Session.connect

    def connect(self, *args, **kwargs):
        orig(self, *args, **kwargs)
        server = listener.next_server()
        server.read_lines(3)
        server.send(':server 001 jbond :Welcome')
        server.sock.shutdown(socket.SHUT_WR)

    return connect


def test_interrupt_after_server_gone_exits_cleanly(monkeypatch):
    transport = mock.Mock()
    transport.write_line.side_effect = client.TransportWriteError("broken pipe")

    def connect(self, *args, **kwargs):
        self.transport = transport

    def interrupted(*args, **kwargs):
        raise KeyboardInterrupt()

    monkeypatch.setattr('sys.argv', ['watch', 'irc.example.org', 'jbond'])
    monkeypatch.setattr(client.Session, 'connect', connect)
    monkeypatch.setattr(watch, 'watch', interrupted)
    with pytest.raises(SystemExit) as exc_info:
        watch.main()
    assert exc_info.value.code == 0
    transport.write_line.assert_called_once_with('QUIT')
    transport.close.assert_called_once_with()
