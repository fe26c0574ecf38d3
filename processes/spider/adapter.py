from __future__ import annotations

import json
import logging
import math
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from netscript.base import HOME, Environment
from netscript.capabilities import PortCracker, available_crackers, open_port
from pipeline.io.settings import BOTNET_KEY, NETWORK_MAP_KEY, Settings, SettingsStore
from processes.workers.operators import WORKER_SCRIPTS

from .crawler import crawl

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerData:
    hostname: str
    is_home: bool
    needed_level: int
    has_root_access: bool
    required_ports: int
    max_ram: float
    used_ram: float
    free_ram: float
    max_slots: int
    free_slots: int
    security: float
    min_security: float
    money: float
    max_money: float
    hack_time: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SpiderResult:
    crackers: list[str] = field(default_factory=list)
    botnet: dict[str, ServerData] = field(default_factory=dict)
    network_map: dict[str, list[str]] = field(default_factory=dict)
    deploy_failures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "crackers": list(self.crackers),
            "botnet": sorted(self.botnet),
            "hosts": len(self.network_map),
            "deploy_failures": list(self.deploy_failures),
        }


def peek_into_server(env: Environment, hostname: str, settings: Settings) -> ServerData:
    """Collect what the scheduler and the spider need to know about ``hostname``."""
    is_home = hostname == HOME
    max_ram = env.max_ram(hostname)
    if is_home:
        max_ram -= settings.reserved_home_ram
    max_ram = max(0.0, max_ram)
    used_ram = max(0.0, env.used_ram(hostname))
    free_ram = max(0.0, max_ram - used_ram)
    slot = settings.script_ram_cost
    return ServerData(
        hostname=hostname,
        is_home=is_home,
        needed_level=env.required_hacking_level(hostname),
        has_root_access=env.has_root_access(hostname),
        required_ports=env.required_ports(hostname),
        max_ram=max_ram,
        used_ram=used_ram,
        free_ram=free_ram,
        max_slots=int(math.floor(max_ram / slot)),
        free_slots=int(math.floor(free_ram / slot)),
        security=env.security_level(hostname),
        min_security=env.min_security_level(hostname),
        money=env.money_available(hostname),
        max_money=env.max_money(hostname),
        hack_time=env.hack_time(hostname),
    )


def make_bot(env: Environment, server: ServerData, crackers: Sequence[PortCracker]) -> bool:
    """Gain root on ``server`` if possible. True when the host is (now) a bot.

    Hosts that need no open ports are nuked regardless of the hacking level;
    they are useless as targets but fine as workers.
    """
    if server.has_root_access:
        return True

    if server.required_ports <= len(crackers) and env.hacking_level() >= server.needed_level:
        for cracker in crackers:
            logger.debug(json.dumps({"event": "open_port", "host": server.hostname, "cracker": cracker.value}))
            open_port(env, cracker, server.hostname)
        return bool(env.nuke(server.hostname))

    if server.required_ports == 0:
        return bool(env.nuke(server.hostname))

    return False


def deploy_workers(env: Environment, hostname: str) -> bool:
    ok = True
    for script in WORKER_SCRIPTS.values():
        if not env.scp(script, hostname, HOME):
            logger.warning(
                json.dumps({"event": "deploy_failed", "host": hostname, "script": script})
            )
            ok = False
    return ok


def run_spider(
    env: Environment,
    store: SettingsStore | None = None,
    settings: Settings | None = None,
) -> SpiderResult:
    """Crawl the network from home, root every host we can and deploy the workers.

    The botnet (hostname -> server data) and the network map are saved through
    ``store`` when one is given.
    """
    settings = settings or (store.load() if store is not None else Settings())
    crackers = available_crackers(env)
    result = SpiderResult(crackers=[c.value for c in crackers])
    logger.info(json.dumps({"event": "spider_start", "crackers": result.crackers}))

    for hostname in crawl(env):
        server = peek_into_server(env, hostname, settings)
        if make_bot(env, server, crackers):
            if not server.has_root_access:
                server = peek_into_server(env, hostname, settings)
            result.botnet[hostname] = server
            if not deploy_workers(env, hostname):
                result.deploy_failures.append(hostname)
        else:
            logger.debug(
                json.dumps(
                    {
                        "event": "no_root",
                        "host": hostname,
                        "needed_level": server.needed_level,
                        "required_ports": server.required_ports,
                    }
                )
            )
        result.network_map[hostname] = list(env.scan(hostname))

    logger.info(
        json.dumps({"event": "spider_done", "hosts": len(result.network_map), "botnet": len(result.botnet)})
    )
    if store is not None:
        store.save_value(BOTNET_KEY, {h: s.to_dict() for h, s in result.botnet.items()})
        store.save_value(NETWORK_MAP_KEY, result.network_map)
    return result
