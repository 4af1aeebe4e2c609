"""
roomcast.integrations.twilio_client
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

Twilio 外呼客户端 —— 只负责发起呼叫并返回 Call SID。

Twilio SDK 是同步阻塞的，调用放到线程池中执行，不阻塞事件循环。
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from roomcast.core.config import Settings, settings
from roomcast.core.errors import TelephonyNotConfigured
from roomcast.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    from_number: str
    voice_url: str


def get_twilio_config(cfg: Settings = settings) -> TwilioConfig:
    """从配置中读取 Twilio 参数。

    Raises:
        TelephonyNotConfigured: 凭据或主叫号码缺失。
    """
    if not cfg.TWILIO_ACCOUNT_SID or not cfg.TWILIO_AUTH_TOKEN:
        raise TelephonyNotConfigured("Twilio credentials are not configured")
    if not cfg.TWILIO_NUMBER:
        raise TelephonyNotConfigured("Twilio from-number is not configured")

    return TwilioConfig(
        account_sid=cfg.TWILIO_ACCOUNT_SID,
        auth_token=cfg.TWILIO_AUTH_TOKEN,
        from_number=cfg.TWILIO_NUMBER,
        voice_url=cfg.TWILIO_VOICE_URL,
    )


def build_twilio_client(config: TwilioConfig) -> Any:
    from twilio.rest import Client

    return Client(config.account_sid, config.auth_token)


async def originate_call(client: Any, to_number: str, config: TwilioConfig) -> str:
    """发起一通外呼。

    Args:
        client: ``twilio.rest.Client`` 实例（测试中可替换为假对象）。
        to_number: 被叫号码。
        config: Twilio 配置。

    Returns:
        Twilio 返回的 Call SID。
    """
    call = await asyncio.to_thread(
        client.calls.create,
        to=to_number,
        from_=config.from_number,
        url=config.voice_url,
    )
    logger.info("📞 外呼已发起 | to=%s | sid=%s", to_number, call.sid)
    return call.sid
