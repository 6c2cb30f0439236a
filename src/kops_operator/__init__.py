"""Kops Operator - Kubernetes operator reconciling kops clusters."""

__version__ = "0.1.0"
