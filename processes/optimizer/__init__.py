"""Optimizer process package.

Drives a target server to minimum security and maximum money with two
concurrently running waves (weaken, grow). The scheduler itself only talks to
a ``netscript.base.Environment``; `adapter.py` wraps it with settings
resolution, a sandbox environment and run artifacts.

CLI usage is available via `python -m processes.optimizer`.
"""
