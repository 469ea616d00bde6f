from nonebot import require
from nonebot.plugin import PluginMetadata, inherit_supported_adapters
from .config import Config
from .configs import lang_data
from .utils import (
    change_language_to,
    get_language,
    get_message_list,
    handle_exception,
    is_qbot,
    is_validity_address,
    parse_host,
)

require("nonebot_plugin_alconna")
require("nonebot_plugin_uninfo")
from arclet.alconna import Alconna, Args, CommandMeta
from nonebot_plugin_alconna import Arparma, Text, UniMessage, on_alconna
from nonebot_plugin_uninfo import Session, UniSession

__plugin_meta__ = PluginMetadata(
    name="UT查服",
    description="Unreal Tournament 服务器状态查询/Unreal Tournament server status query",
    type="application",
    supported_adapters=inherit_supported_adapters(
        "nonebot_plugin_alconna", "nonebot_plugin_uninfo"
    ),
    config=Config,
    usage="""
    Unreal Tournament 服务器状态查询
    用法：
        查UT [ip]:[查询端口] / 查UT [ip]
        设置语言 zh-cn
        当前语言
        语言列表
    usage:
        utcheck ip:port / utcheck ip
        set_lang en
        lang_now
        lang_list
    """.strip(),
)

check = on_alconna(
    Alconna("utcheck", Args["host?", str]),
    aliases={"查UT"},
    priority=10,
    block=True,
)


lang_change = on_alconna(
    Alconna("set_lang", Args["language", str], meta=CommandMeta(compact=True)),
    aliases={"设置语言"},
    priority=10,
    block=True,
)

lang_now = on_alconna(
    Alconna("lang_now", meta=CommandMeta(compact=True)),
    aliases={"当前语言"},
    priority=10,
    block=True,
)

lang_list = on_alconna(
    Alconna("lang_list", meta=CommandMeta(compact=True)),
    aliases={"语言列表"},
    priority=10,
    block=True,
)


@check.handle()
async def _(p: Arparma, session: Session = UniSession()):
    lang = get_language()
    if not p.find("host"):
        await check.finish(Text(f"{lang_data[lang]['where_ip']}"), reply_to=True)
    address, port = parse_host(p.query("host"))

    if not 0 <= port <= 65535:
        await check.finish(Text(f"{lang_data[lang]['where_port']}"), reply_to=True)

    if not is_validity_address(address):
        await check.finish(
            Text(f"{lang_data[lang]['invalid_address']}"), reply_to=True
        )

    await get_info(address, port, session)


async def get_info(ip, port, session):
    try:
        message_list = await get_message_list(ip, port)
        for message in message_list:
            if is_qbot(session):
                for m in message:
                    await check.send(UniMessage(m), reply_to=True)
            else:
                await check.send(UniMessage(message), reply_to=True)
    except Exception as e:
        await check.send(handle_exception(e), reply_to=True)


@lang_change.handle()
async def _(language: str):
    if language:
        await lang_change.send(Text(change_language_to(language)), reply_to=True)
    else:
        await lang_change.send(Text("Language?"), reply_to=True)


@lang_now.handle()
async def _():
    await lang_now.send(Text(f"Language: {get_language()}."), reply_to=True)


@lang_list.handle()
async def _():
    i = "\n".join(list(lang_data.keys()))
    await lang_list.send(Text(f"Language List:\n{i}"), reply_to=True)
