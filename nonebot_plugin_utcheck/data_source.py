# Unreal Tournament 服务器状态查询
#
# 协议说明：
# 客户端向服务器查询端口（一般为游戏端口 + 1）发送一个以 `\` 分隔的文本请求，
# 服务器以一个或多个 UDP 数据报回复，拼接后是 `\key\value\key\value...\final\`
# 形式的键值序列。数据报的边界没有任何含义，只有拼接后的字节流有意义。

from enum import Enum, IntEnum
import socket
from time import perf_counter

from pydantic import BaseModel

SEPARATOR = b"\\"
"""字段分隔符，同时也是响应结束标记"""

FINAL_KEY = "final"
"""响应末尾的哨兵键"""

ENCODING = "iso_8859_1"
"""服务器文本编码，任意字节都能被解码"""

QUERY_PAYLOAD = (
    b"\\status\\"
    b"\\player_property\\Health\\"
    b"\\player_property\\ElapsedTime\\"
    b"\\player_property\\RemainingTime\\"
)
"""状态请求，附带每个玩家的 Health、ElapsedTime、RemainingTime 属性"""

RECV_BUFFER_SIZE = 4096

HEALTH_INDEX_OFFSET = 2
"""服务器把第 i 个玩家的生命值写在 `Health_(i+2)` 中，这是服务端的实际行为"""

PLAYER_FIELDS = {
    "name": "player",
    "ping": "ping",
    "team": "team",
    "frags": "frags",
    "ngsecret": "ngsecret",
    "health": "Health",
    "mesh": "mesh",
    "skin": "skin",
    "face": "face",
}
"""Player 属性名 -> 响应中的字段前缀"""


class ConnStatus(Enum):
    """
    包含可能的查询状态
    - `SUCCESS`：查询成功（请求和响应解析正常）
    - `CONNFAIL`：无法建立到服务器的套接字连接。服务器离线、主机名或端口错误？
    - `TIMEOUT`：在收到完整响应前超时。（服务器负载过高？防火墙规则是否正确？）
    - `UNKNOWN`：收到了响应，但无法按协议解析（端口错误或不是 UT 服务器？）
    - `MISSING_FIELD`：响应中缺少 `numplayers` 所暗示的玩家字段
    """

    def __str__(self) -> str:
        return str(self.name)

    SUCCESS = 0
    """查询成功（请求和响应解析正常）"""

    CONNFAIL = -1
    """无法建立与服务器的套接字连接。（服务器离线，主机名或端口错误？）"""

    TIMEOUT = -2
    """在收到结束标记前超时"""

    UNKNOWN = -3
    """响应无法按协议解析"""

    MISSING_FIELD = -4
    """缺少玩家字段"""


class Team(IntEnum):
    RED = 0
    BLUE = 1
    GREEN = 2
    YELLOW = 3


class QueryError(Exception):
    """所有查询错误的基类"""


class QueryConnectionError(QueryError, ConnectionError):
    """无法与服务器建立连接（DNS 失败、被拒绝、网络不可达）"""

    def __init__(
        self, address: tuple[str, int], cause: OSError | UnicodeError
    ) -> None:
        self.address = address
        # UnicodeError 来自无法编码的主机名，没有 errno
        self.errno = getattr(cause, "errno", None)
        self.strerror = getattr(cause, "strerror", None) or str(cause)
        super().__init__(
            f"cannot connect to {address[0]}:{address[1]}: "
            f"[Errno {self.errno}] {self.strerror}"
        )


class IncompleteResponseError(QueryError):
    """在收到结束标记前超时，或者读到了空数据报"""


class MalformedResponseError(QueryError, ValueError):
    """响应不符合协议格式"""


class MissingFieldError(QueryError, LookupError):
    """`numplayers` 所暗示的某个玩家字段不存在"""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"missing field {key!r}")


class Player(BaseModel):
    """由 `_i` 后缀字段拼出的单个玩家信息，除 team 外保持服务器返回的文本"""

    name: str
    ping: str
    team: int
    """队伍编号：0 红，1 蓝，2 绿，3 黄"""
    frags: str
    ngsecret: str
    health: str
    mesh: str
    skin: str
    face: str

    @property
    def team_name(self) -> str | None:
        """队伍颜色名（red/blue/green/yellow），无法识别时为 None"""
        try:
            return Team(self.team).name.lower()
        except ValueError:
            return None


def field_key(base: str, index: int) -> str:
    """第 index 个玩家的字段名，生命值字段带有 +2 偏移"""
    if base == PLAYER_FIELDS["health"]:
        index += HEALTH_INDEX_OFFSET
    return f"{base}_{index}"


def field(mapping: dict, base: str, index: int) -> str:
    """
    读取第 index 个玩家的某个字段。

    :param mapping: 解码后的状态字典
    :param base: 字段前缀，例如 `player`、`Health`
    :param index: 玩家序号，从 0 开始
    :raises MissingFieldError: 字段不存在
    """
    key = field_key(base, index)
    try:
        return mapping[key]
    except KeyError:
        raise MissingFieldError(key) from None


def query(host: str, port: int, timeout: float) -> bytes:
    """
    向服务器发送状态请求并返回完整的原始响应（包括结尾的 `\\`）。

    每次调用都使用一个新的 UDP 套接字，并在任何情况下关闭它。

    :param host: 服务器地址
    :param port: 查询端口
    :param timeout: 连接以及每次读取的超时时间（秒）
    :raises QueryConnectionError: 无法建立连接
    :raises IncompleteResponseError: 收到结束标记前超时
    """
    address = (host, port)
    try:
        family, socktype, proto, _, sockaddr = socket.getaddrinfo(
            host, port, type=socket.SOCK_DGRAM
        )[0]
    except (OSError, UnicodeError) as e:
        raise QueryConnectionError(address, e) from e

    try:
        sock = socket.socket(family, socktype, proto)
    except OSError as e:
        raise QueryConnectionError(address, e) from e

    try:
        sock.settimeout(timeout)
        try:
            sock.connect(sockaddr)
            sock.send(QUERY_PAYLOAD)
        except TimeoutError as e:
            raise IncompleteResponseError(
                f"timed out sending query to {host}:{port}"
            ) from e
        except OSError as e:
            raise QueryConnectionError(address, e) from e

        return _recv_response(sock, address)
    finally:
        sock.close()


def _recv_response(sock: socket.socket, address: tuple[str, int]) -> bytes:
    """持续读取数据报，直到缓冲区最后一个字节是分隔符"""
    data = bytearray()

    while data[-1:] != SEPARATOR:
        try:
            chunk = sock.recv(RECV_BUFFER_SIZE)
        except TimeoutError as e:
            raise IncompleteResponseError(
                f"timed out after {len(data)} bytes from {address[0]}:{address[1]}"
            ) from e
        except OSError as e:
            # 已连接的 UDP 套接字会在这里收到 ICMP 端口不可达
            raise QueryConnectionError(address, e) from e

        if not chunk:
            raise IncompleteResponseError(
                f"empty read after {len(data)} bytes from {address[0]}:{address[1]}"
            )
        data += chunk

    return bytes(data)


def decode(data: bytes, raw: bool = False) -> dict:
    """
    解析服务器响应。

    :param data: `query()` 返回的原始字节
    :param raw: 为 True 时返回未处理的键值字典，否则把玩家字段整理为 `players` 列表
    :raises MalformedResponseError: 响应不符合协议格式
    :raises MissingFieldError: 缺少玩家字段
    """
    # 字节流以分隔符开头和结尾，首尾两个元素总是空的
    tokens = [token.decode(ENCODING) for token in data.split(SEPARATOR)[1:-1]]

    # 单独的哨兵：`...\final\`
    if tokens and tokens[-1] == FINAL_KEY:
        tokens.pop()

    if len(tokens) % 2:
        raise MalformedResponseError(
            f"unpaired key {tokens[-1]!r} at the end of the response"
        )

    pairs = list(zip(tokens[::2], tokens[1::2]))

    # 带空值的哨兵：`...\final\\`
    if pairs and pairs[-1][0] == FINAL_KEY:
        pairs.pop()

    status = {}
    for key, value in pairs:
        status[key] = value

    if raw:
        return status

    return _extract_players(status)


def _extract_players(status: dict) -> dict:
    if "numplayers" not in status:
        return status

    try:
        num_players = int(status["numplayers"])
    except ValueError:
        raise MalformedResponseError(
            f"numplayers is not a number: {status['numplayers']!r}"
        ) from None

    if num_players <= 0:
        return status

    players = []
    for index in range(num_players):
        values = {
            name: field(status, base, index) for name, base in PLAYER_FIELDS.items()
        }
        try:
            players.append(Player(**values))
        except ValueError as e:
            # team 不是整数
            raise MalformedResponseError(
                f"invalid fields for player {index}: {e}"
            ) from e

    # 所有玩家都解析成功后才删除字段
    for index in range(num_players):
        for base in PLAYER_FIELDS.values():
            del status[field_key(base, index)]

    status["players"] = players
    return status


class UTStat:
    def __init__(self, address: str, port: int, timeout: int) -> None:
        """
        Unreal Tournament 服务器状态检查器

        端口和超时的默认值由插件配置提供（见 `config.ScopedConfig`）。

        :param address: 服务器的 IP 地址或域名。
        :param port: 服务器查询端口。
        :param timeout: 每次套接字操作的超时时间（秒）。
        """
        self.address: str = address
        """服务器地址"""
        self.port: int = port
        """服务器查询端口"""
        self.timeout: int = timeout
        """套接字超时"""
        self.online: bool = False
        """在线或离线"""
        self.latency: int | None = None
        """从发送请求到收到完整响应的时间（毫秒）"""
        self.hostname: str | None = None
        """服务器名称"""
        self.hostport: int | None = None
        """服务器游戏端口"""
        self.gamever: str | None = None
        """服务器版本"""
        self.mapname: str | None = None
        """地图文件名"""
        self.maptitle: str | None = None
        """地图标题"""
        self.gametype: str | None = None
        """游戏模式"""
        self.numplayers: int | None = None
        """当前玩家人数"""
        self.maxplayers: int | None = None
        """最大玩家人数"""
        self.players: list[Player] = []
        """玩家列表"""
        self.status: dict | None = None
        """解码后的完整状态"""
        self.error: QueryError | None = None
        """查询失败时的异常"""

        self.connection_status: ConnStatus = self.status_query()
        """查询状态"""

    def status_query(self) -> ConnStatus:
        start_time = perf_counter()
        try:
            data = query(self.address, self.port, self.timeout)
            self.latency = round((perf_counter() - start_time) * 1000)
            status = decode(data)
        except QueryConnectionError as e:
            self.error = e
            return ConnStatus.CONNFAIL
        except IncompleteResponseError as e:
            self.error = e
            return ConnStatus.TIMEOUT
        except MissingFieldError as e:
            self.error = e
            return ConnStatus.MISSING_FIELD
        except MalformedResponseError as e:
            self.error = e
            return ConnStatus.UNKNOWN

        self.__parse_status(status)
        return ConnStatus.SUCCESS

    def __parse_status(self, status: dict) -> None:
        self.status = status
        self.hostname = status.get("hostname")
        self.gamever = status.get("gamever")
        self.mapname = status.get("mapname")
        self.maptitle = status.get("maptitle")
        self.gametype = status.get("gametype")
        self.players = status.get("players", [])

        if "hostport" in status and status["hostport"].isdigit():
            self.hostport = int(status["hostport"])

        if "numplayers" in status:
            self.numplayers = int(status["numplayers"])
        if "maxplayers" in status and status["maxplayers"].lstrip("-").isdigit():
            self.maxplayers = int(status["maxplayers"])

        self.online = True
