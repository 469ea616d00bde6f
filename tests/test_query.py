import contextlib
import errno
import socket

import pytest

RESPONSE = (
    b"\\hostname\\Frag Fest\\hostport\\7777\\gamever\\451\\mapname\\DM-Deck16][",
    b"\\maptitle\\Deck16][\\gametype\\DeathMatchPlus\\numplayers\\1"
    b"\\maxplayers\\16\\gamever\\436",
    b"\\player_0\\Alice\\ping_0\\48\\team_0\\2\\frags_0\\12\\ngsecret_0\\true"
    b"\\mesh_0\\Female Commando\\skin_0\\FCommandoSkins.daco\\face_0\\Tanya"
    b"\\Health_2\\100\\queryid\\42.1\\final\\",
)


def test_query_single_datagram(udp_server):
    from nonebot_plugin_utcheck.data_source import QUERY_PAYLOAD, query

    with udp_server([b"\\hostname\\Solo\\final\\"]) as server:
        data = query("127.0.0.1", server.port, 2)

    assert data == b"\\hostname\\Solo\\final\\"
    assert server.requests == [QUERY_PAYLOAD]


def test_query_multiple_datagrams(udp_server):
    from nonebot_plugin_utcheck.data_source import decode, query

    with udp_server(list(RESPONSE)) as server:
        data = query("127.0.0.1", server.port, 2)

    assert data == b"".join(RESPONSE)
    status = decode(data)
    assert status["gamever"] == "436"
    assert status["players"][0].team_name == "green"


def test_query_timeout(udp_server):
    from nonebot_plugin_utcheck.data_source import IncompleteResponseError, query

    # the terminator never arrives
    with udp_server([b"\\hostname\\Slow"]) as server:
        with pytest.raises(IncompleteResponseError):
            query("127.0.0.1", server.port, 0.3)


def test_query_empty_datagram(udp_server):
    from nonebot_plugin_utcheck.data_source import IncompleteResponseError, query

    with udp_server([b""]) as server:
        with pytest.raises(IncompleteResponseError):
            query("127.0.0.1", server.port, 2)


def test_query_refused(closed_port: int):
    from nonebot_plugin_utcheck.data_source import QueryConnectionError, query

    with pytest.raises(QueryConnectionError) as exc_info:
        query("127.0.0.1", closed_port, 2)

    assert isinstance(exc_info.value, ConnectionError)
    assert exc_info.value.errno is not None


def test_query_resolve_failure(monkeypatch: pytest.MonkeyPatch):
    from nonebot_plugin_utcheck.data_source import QueryConnectionError, query

    def getaddrinfo(*args, **kwargs):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    monkeypatch.setattr(socket, "getaddrinfo", getaddrinfo)

    with pytest.raises(QueryConnectionError, match="Name or service not known"):
        query("server.invalid", 7778, 2)


@pytest.mark.parametrize(
    ("replies", "error"),
    [
        ([b"\\hostname\\Solo\\final\\"], None),
        ([b"\\hostname\\Slow"], "IncompleteResponseError"),
        (None, "QueryConnectionError"),
    ],
    ids=["success", "timeout", "refused"],
)
def test_query_closes_socket(
    monkeypatch: pytest.MonkeyPatch,
    udp_server,
    closed_port: int,
    replies: list[bytes] | None,
    error: str | None,
):
    from nonebot_plugin_utcheck import data_source

    # the server socket exists before socket.socket is tracked
    if replies is None:
        server, port = contextlib.nullcontext(), closed_port
    else:
        server = udp_server(replies)
        port = server.port

    sockets = []
    real_socket = socket.socket

    def tracking_socket(*args, **kwargs):
        sock = real_socket(*args, **kwargs)
        sockets.append(sock)
        return sock

    monkeypatch.setattr(data_source.socket, "socket", tracking_socket)

    with server:
        if error is None:
            assert data_source.query("127.0.0.1", port, 2).endswith(b"\\final\\")
        else:
            with pytest.raises(getattr(data_source, error)):
                data_source.query("127.0.0.1", port, 0.3)

    assert len(sockets) == 1
    assert sockets[0].fileno() == -1


def test_query_socket_creation_failure(monkeypatch: pytest.MonkeyPatch):
    from nonebot_plugin_utcheck import data_source

    def unsupported_socket(*args, **kwargs):
        raise OSError(errno.EAFNOSUPPORT, "Address family not supported by protocol")

    monkeypatch.setattr(data_source.socket, "socket", unsupported_socket)

    with pytest.raises(data_source.QueryConnectionError) as exc_info:
        data_source.query("127.0.0.1", 7778, 1)

    assert exc_info.value.errno == errno.EAFNOSUPPORT

    us = data_source.UTStat("127.0.0.1", 7778, 1)
    assert us.connection_status is data_source.ConnStatus.CONNFAIL
    assert isinstance(us.error, data_source.QueryConnectionError)


def test_query_unencodable_host():
    from nonebot_plugin_utcheck.data_source import (
        ConnStatus,
        QueryConnectionError,
        UTStat,
        query,
    )

    # a 64 character label cannot be IDNA encoded
    host = "a" * 64 + ".com"

    with pytest.raises(QueryConnectionError) as exc_info:
        query(host, 7778, 1)

    assert exc_info.value.errno is None
    assert UTStat(host, 7778, 1).connection_status is ConnStatus.CONNFAIL


def test_utstat_online(udp_server):
    from nonebot_plugin_utcheck.data_source import ConnStatus, UTStat

    with udp_server(list(RESPONSE)) as server:
        us = UTStat("127.0.0.1", server.port, 2)

    assert us.connection_status is ConnStatus.SUCCESS
    assert us.online
    assert us.hostname == "Frag Fest"
    assert us.hostport == 7777
    assert us.mapname == "DM-Deck16]["
    assert us.gametype == "DeathMatchPlus"
    assert us.numplayers == 1
    assert us.maxplayers == 16
    assert [player.name for player in us.players] == ["Alice"]
    assert us.latency is not None
    assert us.error is None


def test_utstat_missing_field(udp_server):
    from nonebot_plugin_utcheck.data_source import ConnStatus, MissingFieldError, UTStat

    with udp_server([b"\\numplayers\\1\\player_0\\Alice\\final\\"]) as server:
        us = UTStat("127.0.0.1", server.port, 2)

    assert us.connection_status is ConnStatus.MISSING_FIELD
    assert not us.online
    assert isinstance(us.error, MissingFieldError)


def test_utstat_malformed(udp_server):
    from nonebot_plugin_utcheck.data_source import ConnStatus, UTStat

    with udp_server([b"\\hostname\\final\\"]) as server:
        us = UTStat("127.0.0.1", server.port, 2)

    assert us.connection_status is ConnStatus.UNKNOWN


def test_utstat_connfail(closed_port: int):
    from nonebot_plugin_utcheck.data_source import ConnStatus, UTStat

    us = UTStat("127.0.0.1", closed_port, 2)

    assert us.connection_status is ConnStatus.CONNFAIL
    assert str(us.connection_status) == "CONNFAIL"
    assert us.hostname is None
