"""kuberelay: relays Kubernetes object changes to a webhook and tracks ownership churn."""

__version__ = "0.1.0"
