"""One-shot bulk import of provider data into the instrument store.

For each instrument, in the order the provider yields them:

1. stamp every sample with the ingestion time (one clock reading per run),
2. upsert it (insert a new record, or append to the existing history),
3. commit that instrument on its own,
4. report progress as a percentage of the instrument count.

A failure part-way through stops the run. Instruments already committed
stay committed, progress drops back to zero, and a terminal notice is
still emitted. That notice is emitted for every run, including failed
ones, so the caller always gets exactly one completion message.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from pairview.core.exceptions import ConfigurationInvalid
from pairview.core.models import ImportNotice, ImportStatus
from pairview.providers.base import DataProvider
from pairview.storage.sqlite_store import InstrumentStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
CompletionCallback = Callable[[ImportNotice], None]


class ImportPipeline:
    """Merges every instrument from a provider into a store.

    Parameters
    ----------
    on_progress : Callable[[float], None] | None
        Called with the progress percentage (0-100) after each instrument,
        with 0.0 at the start and on reset.
    on_complete : Callable[[ImportNotice], None] | None
        Called once with the terminal notice.
    clock : Callable[[], datetime]
        Source of ingestion timestamps. Default: ``datetime.now``.
    """

    def __init__(
        self,
        on_progress: ProgressCallback | None = None,
        on_complete: CompletionCallback | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._clock = clock
        self._progress = 0.0
        self._stop_requested = False

    @property
    def progress(self) -> float:
        return self._progress

    def request_stop(self) -> None:
        """Ask a running import to stop before the next instrument."""
        self._stop_requested = True

    def start(self, provider: DataProvider, store: InstrumentStore) -> asyncio.Task:  # type: ignore[type-arg]
        """Run the import as a detached task on the current loop.

        A stop requested after this returns applies to the new run.
        """
        self._stop_requested = False
        return asyncio.create_task(self.run(provider, store), name="pairview-import")

    async def run(self, provider: DataProvider, store: InstrumentStore) -> ImportNotice:
        """Import everything ``provider`` yields into ``store``.

        ConfigurationInvalid propagates to the caller before any I/O. Every
        other failure ends the run with a FAILED notice.
        """
        self._set_progress(0.0)
        try:
            return await self._import(provider, store)
        finally:
            self._stop_requested = False

    async def _import(self, provider: DataProvider, store: InstrumentStore) -> ImportNotice:
        try:
            series_list = await provider.fetch_all()
        except ConfigurationInvalid:
            raise
        except Exception as e:
            logger.error("Import aborted, provider fetch failed: %s", e)
            return self._fail(e, total=0, processed=0, inserted=0, appended=0)

        total = len(series_list)
        stamp = self._clock()
        processed = inserted = appended = 0
        logger.info("Importing %d instruments", total)

        try:
            for series in series_list:
                if self._stop_requested:
                    logger.info("Import stopped after %d of %d instruments", processed, total)
                    return self._finish(
                        ImportNotice(
                            status=ImportStatus.CANCELLED,
                            message=f"Import stopped after {processed} of {total} instruments.",
                            total=total,
                            processed=processed,
                            inserted=inserted,
                            appended=appended,
                        )
                    )

                stamped = series.restamped(stamp)
                outcome = await store.upsert_series(stamped)
                if outcome == "inserted":
                    inserted += 1
                else:
                    appended += 1
                processed += 1
                self._set_progress(100.0 * processed / total)
        except Exception as e:
            logger.exception("Import aborted at instrument %d of %d", processed + 1, total)
            return self._fail(
                e, total=total, processed=processed, inserted=inserted, appended=appended
            )

        if self._progress < 100.0:
            self._set_progress(100.0)
        logger.info("Import complete: %d inserted, %d appended", inserted, appended)
        return self._finish(
            ImportNotice(
                status=ImportStatus.COMPLETED,
                message="CSV data loaded.",
                total=total,
                processed=processed,
                inserted=inserted,
                appended=appended,
            )
        )

    def _fail(self, error: Exception, **counts: int) -> ImportNotice:
        self._set_progress(0.0)
        return self._finish(
            ImportNotice(
                status=ImportStatus.FAILED,
                message=f"Import failed: {error}",
                error=str(error),
                **counts,
            )
        )

    def _set_progress(self, value: float) -> None:
        self._progress = value
        if self._on_progress is not None:
            self._on_progress(value)

    def _finish(self, notice: ImportNotice) -> ImportNotice:
        if self._on_complete is not None:
            self._on_complete(notice)
        return notice
