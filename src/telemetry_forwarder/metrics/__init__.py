"""Prometheus metrics for the forwarder engine."""
