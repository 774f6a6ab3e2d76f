"""Pytest configuration and fixtures."""

from __future__ import annotations

import copy
from typing import Any

import pytest

from kubegate.rules.load import load_builtin_ruleset
from kubegate.rules.registry import RuleRegistry


def _container(name: str, *, cpu: str | None = "100m", memory: str | None = "128Mi", **extra: Any) -> dict:
    requests = {}
    if cpu is not None:
        requests["cpu"] = cpu
    if memory is not None:
        requests["memory"] = memory
    container: dict[str, Any] = {"name": name, "image": f"registry.example.com/{name}:1.2.3"}
    if requests:
        container["resources"] = {"requests": requests}
    container.update(extra)
    return container


@pytest.fixture
def make_container():
    """Factory for container specs with CPU and memory requests set."""
    return _container


@pytest.fixture
def pod_manifest() -> dict:
    """A Pod with two containers, both with CPU and memory requests."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "web", "namespace": "shop", "labels": {"app.kubernetes.io/name": "web"}},
        "spec": {"containers": [_container("app"), _container("sidecar")]},
    }


@pytest.fixture
def deployment_manifest() -> dict:
    """A Deployment that satisfies every core rule."""
    probe = {"httpGet": {"path": "/healthz", "port": 8080}}
    app = _container("app", livenessProbe=probe, readinessProbe=probe)
    app["resources"]["limits"] = {"memory": "256Mi"}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": "api",
            "namespace": "shop",
            "labels": {"app.kubernetes.io/name": "api", "app.kubernetes.io/owner": "payments"},
        },
        "spec": {
            "replicas": 3,
            "template": {
                "metadata": {"labels": {"app": "api"}},
                "spec": {
                    "containers": [app],
                    "topologySpreadConstraints": [
                        {"maxSkew": 1, "topologyKey": "topology.kubernetes.io/zone", "whenUnsatisfiable": "DoNotSchedule"}
                    ],
                },
            },
        },
    }


@pytest.fixture
def clone():
    """Deep-copy helper so tests can mutate shared fixtures freely."""
    return copy.deepcopy


@pytest.fixture(scope="session")
def core_registry() -> RuleRegistry:
    """Registry built from the shipped core ruleset."""
    return RuleRegistry.from_rulesets([load_builtin_ruleset()])
