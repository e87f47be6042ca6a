"""GeoIP lookup against the internal ipip service."""
from __future__ import annotations

import json
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ipgroup.lib import config_loader

SUCCESS = 1


@dataclass
class LookupResult:
    ip: str
    country: str = ""
    province: str = ""
    city: str = ""
    isp: str = ""
    ret: int = 0
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.ret == SUCCESS

    @classmethod
    def failure(cls, ip: str, reason: str) -> "LookupResult":
        return cls(ip=ip, ret=0, reason=reason)

    @classmethod
    def from_payload(cls, ip: str, payload: Dict[str, Any]) -> "LookupResult":
        def text(key: str) -> str:
            value = payload.get(key)
            return "" if value is None else str(value)

        ret = payload.get("ret", 0)
        # status must be a JSON integer; bools and floats are failures
        if isinstance(ret, bool) or not isinstance(ret, int):
            ret = 0
        return cls(
            ip=text("ip") or ip,
            country=text("country"),
            province=text("province"),
            city=text("city"),
            isp=text("isp"),
            ret=ret,
            reason=text("reason"),
        )


def is_ipv6(ip: str) -> bool:
    return ":" in ip


def endpoint_for(ip: str, config: Dict[str, Any]) -> str:
    template = config["ipv6_url"] if is_ipv6(ip) else config["ipv4_url"]
    return template.replace("{ip}", urllib.parse.quote(ip, safe=":"))


def lookup(ip: str, config: Optional[Dict[str, Any]] = None) -> LookupResult:
    """Query the service for ``ip``; failures come back as ``ret=0`` results."""
    cfg = config if config is not None else config_loader.DEFAULT_CONFIG
    url = endpoint_for(ip, cfg)
    kwargs: Dict[str, Any] = {}
    if cfg.get("timeout"):
        kwargs["timeout"] = cfg["timeout"]
    try:
        with urllib.request.urlopen(url, **kwargs) as resp:  # nosec B310
            body = resp.read()
    except Exception as exc:
        return LookupResult.failure(ip, str(exc))
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        return LookupResult.failure(ip, f"invalid response: {exc}")
    if not isinstance(payload, dict):
        return LookupResult.failure(ip, "invalid response: expected a JSON object")
    return LookupResult.from_payload(ip, payload)
