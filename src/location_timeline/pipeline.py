"""
Batch pipeline using the service layer.

A run flushes the user's pending samples and then rebuilds every local day
that holds samples (or the requested days only).
"""

import asyncio
import logging
from datetime import date
from pathlib import Path

from .exceptions import LocationTimelineError, ProcessingError
from .models import ReprocessResult, UploadResult
from .services import TimelineService
from .settings import Settings, load_settings

logger = logging.getLogger(__name__)


class Pipeline:
    """
    Thin orchestration over TimelineService.

    The pipeline owns the service for the duration of a run and closes its
    HTTP clients afterwards.
    """

    def __init__(self, settings: Settings, service: TimelineService | None = None):
        """
        Initialize the pipeline.

        Args:
            settings: Application settings
            service: Pre-built service (tests inject fakes)
        """
        self.settings = settings
        self.service = service or TimelineService(settings)
        self.logger = logging.getLogger(__name__)

    async def run_async(
        self, user_id: str, days: list[date] | None = None
    ) -> tuple[UploadResult, list[ReprocessResult]]:
        """
        Execute the pipeline for one user.

        This method:
        1. Flushes pending samples into the timeline database
        2. Finds the local days to rebuild
        3. Reprocesses each day in order

        Raises:
            ProcessingError: If pipeline execution fails
        """
        try:
            self.logger.info("=" * 60)
            self.logger.info(f"Starting timeline pipeline for {user_id}")
            self.logger.info("=" * 60)

            upload = await self.service.flush(user_id)
            if upload.errors:
                self.logger.warning(f"Upload incomplete: {'; '.join(upload.errors)}")

            if days is None:
                days = self.service.repository.sample_days(user_id, self.settings.tz)

            results = []
            for day in sorted(days):
                results.append(await self.service.reprocess_day(user_id, day))

            self.logger.info("=" * 60)
            self.logger.info("Pipeline completed successfully")
            self.logger.info(f"Samples uploaded: {upload.uploaded}")
            self.logger.info(f"Days reprocessed: {len(results)}")
            self.logger.info(
                f"Segments created: {sum(r.segments_created for r in results)}"
            )
            self.logger.info("=" * 60)
            return upload, results

        except LocationTimelineError as e:
            self.logger.error(f"Pipeline failed: {e}")
            if isinstance(e, ProcessingError):
                raise
            raise ProcessingError(f"Pipeline execution failed: {e}") from e

    def run(
        self, user_id: str, days: list[date] | None = None
    ) -> tuple[UploadResult, list[ReprocessResult]]:
        """Synchronous entry point around run_async()."""

        async def _run():
            try:
                return await self.run_async(user_id, days)
            finally:
                await self.service.close()

        return asyncio.run(_run())


def run_pipeline(config_path: str, user_id: str) -> None:
    """
    Run the pipeline from a config file.

    Args:
        config_path: Path to the configuration YAML file
        user_id: User whose timeline is rebuilt
    """
    settings = load_settings(Path(config_path))
    pipeline = Pipeline(settings)
    pipeline.run(user_id)
