"""Runtime services around the signal engines.

Scheduling (orchestrator), output caching (bridge), health tracking
(hub) and the resilience layer every external call passes through.
Configuration comes from SIGNAL_HUB_* environment variables and
resilience.yaml.
"""
