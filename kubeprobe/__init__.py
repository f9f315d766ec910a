"""Kubernetes object caches, permission checks, discovery attributes, ingress editing and background command actions."""

__version__ = "0.1.0"