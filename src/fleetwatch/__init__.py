"""fleetwatch -- token, cost and liveness tracking for AI agent fleets."""

__version__ = "0.1.0"
