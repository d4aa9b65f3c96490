"""
SnapshotStore - Read-only static fallbacks, one JSON document per endpoint family.

Snapshots are not parameterized: every page, slug or keyword of an endpoint
shares the same document.
"""

import asyncio
import json
from pathlib import Path
from typing import Any

from loguru import logger

from streamgate.services.endpoints import EndpointSpec, normalize_snapshot


class SnapshotStore:
    """Loads snapshot documents by exact filename from a directory."""

    def __init__(self, directory: str | Path):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    async def load(self, spec: EndpointSpec) -> Any | None:
        """
        Load and normalize the snapshot for an endpoint.

        Returns:
            The payload, or None when no snapshot exists or it cannot be parsed
        """
        if spec.snapshot is None:
            logger.warning(f"No snapshot configured for endpoint: {spec.name}")
            return None

        path = self._directory / spec.snapshot
        try:
            raw = await asyncio.to_thread(path.read_text, "utf-8")
            document = json.loads(raw)
        except FileNotFoundError:
            logger.error(f"Snapshot missing for {spec.name}: {path}")
            return None
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load snapshot for {spec.name}: {e}")
            return None

        logger.info(f"Using snapshot data from: {spec.snapshot}")
        return normalize_snapshot(spec, document)
