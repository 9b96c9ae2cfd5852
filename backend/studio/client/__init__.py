"""Clients for the studio HTTP API."""

from studio.client.executor import Executor
from studio.client.sdk import StudioClient

__all__ = ["Executor", "StudioClient"]
