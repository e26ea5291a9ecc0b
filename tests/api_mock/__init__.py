"""Monitoring API mock for planner and CLI tests.

Provides an in-memory stand-in for ``MonitoringApi`` that keeps remote
state per resource kind and records every call.

Usage:
    from api_mock import FakeMonitoringApi

    api = FakeMonitoringApi()
    api.seed("monitor", {"id": 1, "name": "cpu", "message": "..."})

    planner = Planner(api)
    planner.execute(planner.plan(records))

    assert api.mutations == [("create", "monitor", 2)]
"""

from .fake import FakeMonitoringApi, ServerAssigned

__all__ = ["FakeMonitoringApi", "ServerAssigned"]
