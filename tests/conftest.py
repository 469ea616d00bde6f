import socket
import threading

import nonebot
import pytest


@pytest.fixture(scope="session", autouse=True)
def load_plugin():
    nonebot.init(driver="~none", utc={"type": 1, "language": "en", "timeout": 2})
    nonebot.require("nonebot_plugin_utcheck")


class FakeServer:
    """A loopback UDP server that answers the first datagram with `replies`."""

    def __init__(self, replies: list[bytes]):
        self.replies = replies
        self.requests: list[bytes] = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(5)
        self.port = self.sock.getsockname()[1]
        self.thread = threading.Thread(target=self.serve, daemon=True)

    def serve(self):
        try:
            data, addr = self.sock.recvfrom(4096)
        except OSError:
            return
        self.requests.append(data)
        for reply in self.replies:
            self.sock.sendto(reply, addr)

    def __enter__(self):
        self.thread.start()
        return self

    def __exit__(self, *exc):
        self.thread.join(timeout=5)
        self.sock.close()


@pytest.fixture
def udp_server():
    return FakeServer


@pytest.fixture
def closed_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
