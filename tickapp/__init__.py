"""Tick signal service: upstream connections, execution and control API."""
