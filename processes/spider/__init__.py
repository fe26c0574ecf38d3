"""Network discovery: crawl reachable hosts, root what we can, deploy workers.

CLI usage is available via `python -m processes.optimizer spider`.
"""
