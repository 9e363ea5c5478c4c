"""Core signal computation: data model, statistics, engines and the registry.

This package contains pure computation with no I/O dependencies
(no network access, no timers). Runtime services that schedule,
cache and protect engine execution live in signal_hub/.
"""
