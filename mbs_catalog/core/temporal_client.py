"""Temporal client configuration and connection management.

This module centralizes Temporal client access in the core layer so that
the job scheduler and the worker share a single connection manager.
"""

from typing import Optional

from temporalio.client import Client as TemporalClient

from mbs_catalog.core.config import settings


class TemporalClientManager:
    """Manages Temporal client connection.

    Lazily creates a Temporal client and keeps it around for reuse.
    """

    _client: Optional[TemporalClient] = None

    async def get_client(self) -> TemporalClient:
        """Get or create Temporal client instance.

        Returns:
            TemporalClient: Connected Temporal client
        """
        if self._client is None:
            self._client = await TemporalClient.connect(
                f"{settings.temporal_host}:{settings.temporal_port}",
                namespace=settings.temporal_namespace,
            )
        return self._client

    def reset(self) -> None:
        """Drop the cached client; the next call reconnects."""
        self._client = None


_temporal_manager = TemporalClientManager()


async def get_temporal_client() -> TemporalClient:
    """Get Temporal client instance.

    Returns:
        TemporalClient: Connected Temporal client
    """
    return await _temporal_manager.get_client()


def close_temporal_client() -> None:
    _temporal_manager.reset()
