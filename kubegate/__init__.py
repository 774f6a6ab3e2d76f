"""kubegate - declarative policy evaluation for Kubernetes workload manifests."""

__version__ = "0.1.0"
