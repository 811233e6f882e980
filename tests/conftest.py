"""Shared test fixtures for the Vanguard client and bot tests."""

import sys
from pathlib import Path

import pytest

# Ensure the bots directory and the repo root are importable
sys.path.insert(0, str(Path(__file__).parent.parent / "bots"))
sys.path.insert(0, str(Path(__file__).parent.parent))

from pkg.vanguard.errors import TransportError
from pkg.vanguard.transport import Response, Transport


class FakeTransport(Transport):
    """
    Scripted leaf transport.

    Routes map (METHOD, path) to a Response, an exception, or a list of
    those consumed one per call. Every request is recorded.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []

    def add(self, method, path, outcome):
        self.routes[(method, path)] = outcome

    def send(self, request):
        self.requests.append(request)
        outcome = self.routes.get((request.method, request.path))
        if outcome is None:
            return Response(status_code=404, data={"message": "Not found"}, url=request.path)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, TransportError):
            raise outcome
        return outcome

    def calls(self, method=None, path=None):
        return [
            r for r in self.requests
            if (method is None or r.method == method) and (path is None or r.path == path)
        ]


def task_json(task_id, name, status="not-started", **extra):
    data = {
        "_id": task_id,
        "taskName": name,
        "taskDescription": f"{name} description",
        "taskStatus": status,
        "taskPriority": "Low Priority",
        "archived": False,
    }
    data.update(extra)
    return data


@pytest.fixture
def fake_transport():
    return FakeTransport()
