from typing import Any

from fastapi import Depends, Request

from roomcast.integrations.twilio_client import TwilioConfig, build_twilio_client, get_twilio_config
from roomcast.services.relay_hub import RelayHub


def get_relay_hub(request: Request) -> RelayHub:
    return request.app.state.relay_hub


def get_twilio_settings() -> TwilioConfig:
    return get_twilio_config()


def get_twilio_client(config: TwilioConfig = Depends(get_twilio_settings)) -> Any:
    return build_twilio_client(config)
