"""Shared fixtures for kuberelay tests.

Objects are plain dicts shaped like the unstructured bodies the kubernetes
dynamic client returns, so no cluster is needed.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_object(
    name: str = "web",
    namespace: str = "default",
    kind: str = "Deployment",
    api_version: str = "apps/v1",
    owners: list[tuple[str, str, str]] | None = None,
    resource_version: str = "1",
) -> dict[str, Any]:
    """Build an unstructured object; *owners* are (apiVersion, kind, name) triples."""
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "resourceVersion": resource_version,
    }
    if owners:
        metadata["ownerReferences"] = [
            {"apiVersion": av, "kind": k, "name": n, "uid": f"uid-{n}"} for av, k, n in owners
        ]
    return {"apiVersion": api_version, "kind": kind, "metadata": metadata, "spec": {"replicas": 1}}


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_obj() -> Callable[..., dict[str, Any]]:
    return make_object
