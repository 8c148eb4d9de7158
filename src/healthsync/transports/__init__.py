"""Batch-carrying transports for HealthSync.

Each client implements the Transport ABC and handles:
- Reachability / connection state, published to status listeners
- Fetching remote records newer than a watermark
- Sending a Batch and mapping the outcome into a typed Result

Available transports:
    LocalServerClient — HTTP against the local sync server (/api/v1)
    RadioLinkClient   — Fragmented transfer over a direct radio link
"""

from src.healthsync.transports.base import Transport, UploadReceipt
from src.healthsync.transports.local_server import LocalServerClient
from src.healthsync.transports.radio import RadioDevice, RadioLink, RadioLinkClient, RadioState

__all__ = [
    "Transport",
    "UploadReceipt",
    "LocalServerClient",
    "RadioLinkClient",
    "RadioLink",
    "RadioDevice",
    "RadioState",
]
