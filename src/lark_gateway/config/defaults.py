"""Default configuration values for the gateway."""

from __future__ import annotations

_LARK_FAMILY_DEFAULTS: dict[str, object] = {
    "enabled": False,
    "app_id": "",
    "app_secret": "",
    "allowed_users": [],
    "receive_mode": "websocket",
}

DEFAULT_CONFIG: dict[str, dict[str, object]] = {
    "gateway": {
        "log_level": "info",
        "queue_size": 100,
    },
    "channels": {
        "lark": {**_LARK_FAMILY_DEFAULTS, "use_feishu": False},
        "feishu": dict(_LARK_FAMILY_DEFAULTS),
    },
}
