from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from symbolhub.ingestion.processor import IngestionProcessor, IngestionSummary
from symbolhub.instruments.schemas import ProcessType

logger = logging.getLogger(__name__)


class SymbolIngestionLoader:
    """Re-ingests the configured instrument master on a fixed interval."""

    def __init__(
        self,
        processor: IngestionProcessor,
        source_path: str | Path,
        refresh_interval_seconds: int = 24 * 60 * 60,
    ) -> None:
        self.processor = processor
        self.source_path = Path(source_path)
        self.refresh_interval_seconds = refresh_interval_seconds
        self.last_summary: IngestionSummary | None = None
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name="symbol-ingestion-loader")
        logger.info("Symbol ingestion loader started for %s", self.source_path)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.info("Symbol ingestion loader stopped")

    async def refresh_once(self) -> bool:
        try:
            summary = await asyncio.to_thread(self.processor.run, self.source_path, ProcessType.DAILY_UPDATE)
        # IngestionSourceError, or a run already in progress
        except RuntimeError as exc:
            logger.warning("Symbol ingestion skipped: %s", exc)
            return False
        self.last_summary = summary
        return True

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.refresh_once()
            except Exception as exc:
                logger.warning("Symbol ingestion loop failed: %s", exc)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.refresh_interval_seconds)
            except asyncio.TimeoutError:
                continue
