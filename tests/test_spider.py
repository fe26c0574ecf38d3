from __future__ import annotations

from pathlib import Path

from netscript.capabilities import PortCracker
from netscript.sandbox import SandboxEnvironment, SandboxServer
from pipeline.io.settings import BOTNET_KEY, NETWORK_MAP_KEY, Settings, SettingsStore
from processes.spider.adapter import make_bot, peek_into_server, run_spider
from processes.spider.crawler import crawl, network_map
from processes.workers.operators import WORKER_SCRIPTS


def _env(sandbox_env_path: Path) -> SandboxEnvironment:
    return SandboxEnvironment.from_path(sandbox_env_path)


def test_crawl_visits_every_host_once(sandbox_env_path: Path) -> None:
    hosts = crawl(_env(sandbox_env_path))
    assert hosts[0] == "home"
    assert sorted(hosts) == sorted(["home", "n00dles", "foodnstuff", "sigma-cosmetics", "neo-net"])
    assert len(hosts) == len(set(hosts))


def test_network_map_is_adjacency(sandbox_env_path: Path) -> None:
    nm = network_map(_env(sandbox_env_path))
    assert "neo-net" in nm["sigma-cosmetics"]
    assert nm["neo-net"] == ["sigma-cosmetics"]


def test_peek_reserves_home_ram(sandbox_env_path: Path) -> None:
    env = _env(sandbox_env_path)
    data = peek_into_server(env, "home", Settings(reserved_home_ram=16))
    assert data.is_home
    assert data.max_ram == 48
    assert data.max_slots == 27


def test_make_bot_opens_ports_then_nukes(sandbox_env_path: Path) -> None:
    env = _env(sandbox_env_path)
    server = peek_into_server(env, "sigma-cosmetics", Settings())
    assert make_bot(env, server, [PortCracker.BRUTE_SSH])
    assert env.has_root_access("sigma-cosmetics")


def test_make_bot_refuses_without_enough_crackers(sandbox_env_path: Path) -> None:
    env = _env(sandbox_env_path)
    server = peek_into_server(env, "neo-net", Settings())
    assert not make_bot(env, server, [PortCracker.BRUTE_SSH])
    assert not env.has_root_access("neo-net")


def test_portless_host_is_nuked_regardless_of_level() -> None:
    env = SandboxEnvironment(
        [SandboxServer("home", root=True, neighbors=["fancy"]), SandboxServer("fancy", required_level=900)]
    )
    server = peek_into_server(env, "fancy", Settings())
    assert make_bot(env, server, [])
    assert env.has_root_access("fancy")


def test_run_spider_persists_botnet_and_map(sandbox_env_path: Path) -> None:
    env = _env(sandbox_env_path)
    store = SettingsStore()

    result = run_spider(env, store)

    assert result.crackers == ["BruteSSH.exe"]
    assert sorted(result.botnet) == ["foodnstuff", "home", "n00dles", "sigma-cosmetics"]
    assert result.deploy_failures == []
    for script in WORKER_SCRIPTS.values():
        assert env.file_exists(script, "sigma-cosmetics")

    botnet = store.load_value(BOTNET_KEY)
    assert botnet["sigma-cosmetics"]["has_root_access"] is True
    assert set(store.load_value(NETWORK_MAP_KEY)) == set(result.network_map)
