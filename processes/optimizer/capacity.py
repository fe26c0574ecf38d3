from __future__ import annotations

import math

from netscript.base import HOME, Environment
from pipeline.io.settings import Settings
from processes.spider.crawler import crawl

from .allocator import order_hosts
from .types import Host


def list_reachable_hosts(env: Environment) -> list[str]:
    return crawl(env)


def has_control_access(env: Environment, host: str) -> bool:
    return env.has_root_access(host)


def _usable_ram(env: Environment, host: str, settings: Settings) -> float:
    max_ram = env.max_ram(host)
    if host == HOME:
        max_ram -= settings.reserved_home_ram
    return max(0.0, max_ram)


def host_snapshot(env: Environment, host: str, settings: Settings) -> Host:
    return Host(
        hostname=host,
        max_ram=_usable_ram(env, host, settings),
        used_ram=env.used_ram(host),
        slot_ram=settings.script_ram_cost,
    )


def free_slots(env: Environment, host: str, settings: Settings) -> int:
    return host_snapshot(env, host, settings).free_slots


def used_slots(env: Environment, host: str, settings: Settings) -> int:
    return int(math.ceil(env.used_ram(host) / settings.script_ram_cost))


def scan_capacity(env: Environment, settings: Settings) -> list[Host]:
    """Hosts under our control, biggest free capacity first."""
    hosts = [
        host_snapshot(env, name, settings)
        for name in list_reachable_hosts(env)
        if has_control_access(env, name)
    ]
    return order_hosts(hosts)
