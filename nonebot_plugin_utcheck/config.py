from nonebot.plugin import get_plugin_config
from pydantic import BaseModel, Field


class ScopedConfig(BaseModel):
    language: str = Field(default="zh-cn")
    """插件回复所使用的语言"""
    type: int = Field(default=0)
    """插件发送的消息类型，0 为图片，1 为文本"""
    port: int = Field(default=7778)
    """未指定端口时使用的查询端口"""
    timeout: int = Field(default=30)
    """每次套接字操作的超时时间（秒）"""


class Config(BaseModel):
    utc: ScopedConfig = Field(default_factory=ScopedConfig)
    """UTCheck Config"""


config: ScopedConfig = get_plugin_config(Config).utc
