import asyncio
import contextlib
import ipaddress
import os
import re
import traceback
from typing import Literal

import dns.asyncresolver
import dns.exception
import dns.resolver
import idna
from nonebot import logger, require

from .configs import (
    VERSION,
    default_port,
    default_timeout,
    lang,
    lang_data,
    message_type,
)
from .data_source import ConnStatus, Player, UTStat

require("nonebot_plugin_alconna")
require("nonebot_plugin_uninfo")
from nonebot_plugin_alconna import Image, SupportScope, Text
from nonebot_plugin_uninfo import Uninfo


def handle_exception(e):
    error_message = str(e)
    logger.error(traceback.format_exc())
    return Text(f"[CrashHandle]{error_message}\n>>更多信息详见日志文件<<")


def get_language() -> str:
    return lang


def change_language_to(language: str):
    global lang

    try:
        _ = lang_data[language]
    except KeyError:
        return f"No language named '{language}'!"
    else:
        if language == lang:
            return f"The language is already '{language}'!"
        lang = language
        return f"Change to '{language}' success!"


def team_label(player: Player) -> str:
    """玩家所在队伍的本地化名称"""
    return lang_data[lang][player.team_name or "no_team"]


def format_player(player: Player) -> str:
    """
    把单个玩家格式化为一行文本。

    :params player: 玩家信息。
    """
    text = lang_data[lang]
    return (
        f"{player.name} [{team_label(player)}]"
        f" {text['frags']}:{player.frags}"
        f" {text['ping']}:{player.ping}"
        f" {text['health']}:{player.health}"
    )


async def build_result(us: UTStat, address: str, type: int = 0) -> list[Image | Text]:
    """
    根据类型构建并返回查询结果。

    :params us: 包含服务器信息的对象。
    :params address: 用户输入的查询地址。
    :params type: 结果类型，0 为图片，其他为文本，默认为0。
    """
    players = f"{us.numplayers or 0}/{us.maxplayers if us.maxplayers is not None else '?'}"

    if type == 0:
        result = {
            "hostname": us.hostname,
            "version": us.gamever,
            "gametype": us.gametype,
            "map": us.maptitle or us.mapname,
            "address": address,
            "ip": us.address,
            "port": us.port,
            "delay": f"{us.latency}ms",
            "players": players,
            "player_list": [
                {
                    "name": player.name,
                    "team": player.team_name or "",
                    "frags": player.frags,
                    "ping": player.ping,
                    "health": player.health,
                }
                for player in us.players
            ],
            "lang": lang_data[lang],
            "VERSION": VERSION,
        }
        require("nonebot_plugin_htmlrender")
        from nonebot_plugin_htmlrender import template_to_pic

        template_dir = os.path.join(os.path.dirname(__file__), "templates")
        pic = await template_to_pic(
            template_path=template_dir,
            template_name="default.html",
            templates={"data": result},
        )
        return [Image(raw=pic)]

    text = lang_data[lang]
    result = (
        f"{text['hostname']}{us.hostname}"
        f"\n{text['version']}{us.gamever}"
        f"\n{text['gametype']}{us.gametype}"
        f"\n{text['map']}{us.maptitle or us.mapname}"
        f"\n{text['address']}{address}"
        f"\n{text['ip']}{us.address}"
        f"\n{text['port']}{us.port}"
        f"\n{text['delay']}{us.latency}ms"
        f"\n{text['players']}{players}"
    )
    if us.players:
        result += f"\n{text['player_list']}\n" + "\n".join(
            format_player(player) for player in us.players
        )
    return [Text(result)]


def get_ut(host: str, port: int, timeout: int) -> tuple[UTStat | None, ConnStatus]:
    """
    通过指定的主机名、端口和超时时间获取服务器状态。

    :params host: 服务器的主机名。
    :params port: 服务器的查询端口。
    :params timeout: 超时时间（秒）。

    :returns:
    - UTStat实例，如果服务器不在线返回None。
    - ConnStatus实例，服务器查询状态。
    """
    result = UTStat(host, port, timeout)

    if result.online:
        logger.debug(
            f"{host}:{port} online, {result.numplayers} players, {result.latency}ms"
        )
        return result, ConnStatus.SUCCESS

    logger.debug(f"{host}:{port} {result.connection_status}: {result.error}")
    return None, result.connection_status


async def get_message_list(
    ip: str, port: int, timeout: int = default_timeout
) -> list[list[Text | Image]]:
    """
    根据IP和端口获取消息列表。

    每个解析出的地址都在独立的线程中查询，互不共享套接字。

    :params ip: 服务器的地址。
    :params port: 服务器的查询端口，为0时使用配置中的默认端口。
    :params timeout: 超时时间（秒），默认取自插件配置。

    :returns: 包含消息的列表。
    """
    port = port or default_port
    ip_groups = await get_origin_address(ip, port)
    messages = []
    results = await asyncio.gather(
        *(
            asyncio.to_thread(get_ut, ip_group[0], ip_group[1], timeout)
            for ip_group in ip_groups
        )
    )

    for us, _ in results:
        if us is not None:
            messages.append(await build_result(us, ip, message_type))
    if not messages:
        messages.append(
            next(
                (
                    [Text(f"{lang_data[lang][str(status)]}")]
                    for _, status in results
                    if status != ConnStatus.CONNFAIL
                ),
                [Text(f"{lang_data[lang][str(ConnStatus.CONNFAIL)]}")],
            )
        )
    return messages


def parse_host(host_name: str) -> tuple[str, int]:
    """
    解析主机名（可选端口）。

    支持 `host:port`、`[IPv6]:port` 以及全角冒号。
    如果主机名中未指定端口，则端口号为0。

    :params host_name: 主机名，可能包含端口。

    :returns: 一个元组，包含主机的地址和端口号。
    """
    pattern = r"(?:\[(.+?)\]|(.+?))(?:[:：](\d+))?$"
    if not (match := re.match(pattern, host_name)):
        return host_name, 0

    address = match[1] or match[2]
    port = int(match[3]) if match[3] else 0

    # a bare IPv6 address is split on its last group by the pattern above
    if match[2] and match[3] and is_ipv6(host_name):
        return host_name, 0

    return address, port


def is_validity_address(address: str) -> bool:
    """
    判断给定的地址是否为有效的域名或IP地址。

    :params address: 需要验证的地址，可以是域名地址或IP地址。
    """
    return is_domain(address) or is_ipv4(address) or is_ipv6(address)


def is_domain(address: str) -> bool:
    """
    判断给定的地址是否为域名。

    :params address: 需要验证的地址。
    """
    try:
        punycode_address = idna.encode(address).decode("utf-8")
    except idna.IDNAError:
        return False

    domain_pattern = re.compile(
        r"^(?!-)(?:[A-Za-z0-9-]{1,63}\.)+(?:[A-Za-z]{2,}|xn--[A-Za-z0-9-]{2,})$|^(localhost)$"
    )
    return bool(domain_pattern.match(punycode_address))


def is_ipv4(address: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(address), ipaddress.IPv4Address)
    except ValueError:
        return False


def is_ipv6(address: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(address), ipaddress.IPv6Address)
    except ValueError:
        return False


def get_ip_type(address: str) -> Literal["IPv4", "IPv6", "Domain"]:
    """获取地址类型"""
    if not is_validity_address(address):
        raise ValueError("Invalid address")
    if is_ipv4(address):
        return "IPv4"
    elif is_ipv6(address):
        return "IPv6"
    else:
        return "Domain"


async def get_origin_address(
    domain: str, ip_port: int
) -> list[tuple[str, int, Literal["IPv4", "IPv6", "Domain"]]]:
    """
    获取域名所解析的A或AAAA记录，如果传入不是域名直接返回。

    :params domain: 需要解析的地址。
    :params ip_port: 查询端口。

    :returns: 一个列表，每个元素为 (IP地址, 端口号, 地址类型)
    """
    ip_type = get_ip_type(domain)
    if ip_type != "Domain":
        return [(domain, ip_port, ip_type)]

    data = []
    resolver = dns.asyncresolver.Resolver()
    resolver.timeout = 10
    resolver.retries = 3  # type: ignore

    async def resolve(rdtype: Literal["A", "AAAA"], ip_type: Literal["IPv4", "IPv6"]):
        with contextlib.suppress(
            dns.resolver.NoAnswer,
            dns.resolver.NXDOMAIN,
            dns.exception.Timeout,
            dns.resolver.NoNameservers,
        ):
            response = await resolver.resolve(domain, rdtype)
            for rdata in response:
                data.append((str(rdata.address), ip_port, ip_type))  # type: ignore
                break

    await asyncio.gather(resolve("AAAA", "IPv6"), resolve("A", "IPv4"))

    if not data:
        # fall back to the system resolver inside the query itself
        data.append((domain, ip_port, "Domain"))
    return data


def is_qbot(session: Uninfo) -> bool:
    """判断bot是否为qq官bot

    参数:
        session: Uninfo

    返回:
        bool: 是否为官bot
    """
    return session.scope == SupportScope.qq_api
