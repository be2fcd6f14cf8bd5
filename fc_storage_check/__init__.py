"""Verify FC-backed storage provisioning on every schedulable cluster node."""

__version__ = "0.1.0"
