"""Gateway configuration system."""

from lark_gateway.config.manager import ConfigManager
from lark_gateway.config.schema import FeishuConfig, GatewayConfig, LarkConfig, LarkReceiveMode

__all__ = ["ConfigManager", "FeishuConfig", "GatewayConfig", "LarkConfig", "LarkReceiveMode"]
