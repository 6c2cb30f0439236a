"""Builders turning custom resources into kops objects."""
