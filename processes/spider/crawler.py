from __future__ import annotations

from netscript.base import HOME, Environment


def crawl(env: Environment, start: str = HOME) -> list[str]:
    """Every host reachable from ``start``, depth-first, ``start`` included."""
    visited: dict[str, None] = {}
    stack = [start]
    while stack:
        hostname = stack.pop()
        if hostname in visited:
            continue
        visited[hostname] = None
        stack.extend(env.scan(hostname))
    return list(visited)


def network_map(env: Environment, start: str = HOME) -> dict[str, list[str]]:
    """Adjacency list of the reachable network."""
    return {host: list(env.scan(host)) for host in crawl(env, start)}
