"""
CLI self-update engine.

This package resolves the installed version of a command-line tool, installs
new versions atomically into per-version directories, points the launcher
shim at the active one and garbage-collects stale installs.
"""

__version__ = "0.1.0"
