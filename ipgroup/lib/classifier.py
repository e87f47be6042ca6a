"""Concurrent province/ISP classification of IP addresses."""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional

from ipgroup.lib import config_loader
from ipgroup.lib import geoip_lookup
from ipgroup.lib import logging_utils

Grouping = Dict[str, Dict[str, List[str]]]


def _bucket(result: geoip_lookup.LookupResult, unknown: str) -> tuple[str, str]:
    if not result.ok:
        return unknown, unknown
    return result.province or unknown, result.isp or unknown


def _report_failure(ip: str, reason: str) -> None:
    logging_utils.warn(f"lookup failed for {ip}: {reason or 'unsuccessful response'}")
    logging_utils.append_log("ip_classify/lookup_failed", {"ip": ip, "reason": reason})


def classify_ips(ips: Iterable[str], config: Optional[Dict[str, Any]] = None) -> Grouping:
    """Look up every address concurrently and group them by province and ISP.

    Returns only after all lookups have finished. Failed lookups are reported
    and land under the ``unknown`` province/ISP; nothing is dropped.
    """
    cfg = config if config is not None else config_loader.DEFAULT_CONFIG
    unknown = cfg.get("unknown") or "unknown"
    addresses = list(ips)
    result: Grouping = {}
    if not addresses:
        return result
    lock = threading.Lock()

    def merge(ip: str, province: str, isp: str) -> None:
        with lock:
            result.setdefault(province, {}).setdefault(isp, []).append(ip)

    def classify_one(ip: str) -> None:
        try:
            info = geoip_lookup.lookup(ip, cfg)
        except Exception as exc:
            info = geoip_lookup.LookupResult.failure(ip, str(exc))
        if not info.ok:
            _report_failure(ip, info.reason)
        province, isp = _bucket(info, unknown)
        merge(ip, province, isp)

    max_workers = cfg.get("workers") or len(addresses)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(classify_one, ip) for ip in addresses]
        for future in futures:
            future.result()
    return result


def count_addresses(grouping: Grouping) -> int:
    return sum(len(ips) for isps in grouping.values() for ips in isps.values())


def count_unknown(grouping: Grouping, unknown: str = "unknown") -> int:
    return len(grouping.get(unknown, {}).get(unknown, []))


def render(grouping: Grouping, fmt: str = "nested") -> Any:
    """Shape the grouping for JSON output.

    ``nested`` keeps province -> ISP -> addresses; ``flat`` yields one
    ``{"province", "isp", "ips"}`` record per bucket.
    """
    if fmt == "flat":
        return [
            {"province": province, "isp": isp, "ips": list(grouping[province][isp])}
            for province in sorted(grouping)
            for isp in sorted(grouping[province])
        ]
    if fmt != "nested":
        raise ValueError(f"unsupported output format: {fmt}")
    return {
        province: {isp: list(grouping[province][isp]) for isp in sorted(grouping[province])}
        for province in sorted(grouping)
    }
