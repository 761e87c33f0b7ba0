from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional

import httpx

PUSH_PATH = "/loki/api/v1/push"


def push_payload(labels: Dict[str, str], message: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """One Loki stream holding a single JSON line stamped with the current time."""
    ts_ns = str(time.time_ns())
    line = json.dumps({"message": message, **(extra or {})})
    return {"streams": [{"stream": labels, "values": [[ts_ns, line]]}]}


async def loki_log(
    http: httpx.AsyncClient,
    loki_url: str,
    message: str,
    level: str = "INFO",
    env: str = "development",
    extra: Optional[Dict[str, Any]] = None,
) -> bool:
    """Push one log line to ``{loki_url}/loki/api/v1/push``; returns whether Loki took it."""
    labels = {"service": "defirates", "env": env, "level": level.lower()}
    try:
        resp = await http.post(f"{loki_url.rstrip('/')}{PUSH_PATH}", json=push_payload(labels, message, extra))
    except httpx.HTTPError:
        # a missing Loki must never break request flow
        return False
    return resp.is_success
