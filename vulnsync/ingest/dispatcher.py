"""Concurrent fan-out of package lookups with per-item failure isolation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Sequence

from vulnsync.events import IndexNotifier
from vulnsync.exceptions import FetchError, PayloadError, StoreError
from vulnsync.ingest.client import SnykClient
from vulnsync.ingest.normalizer import Normalizer
from vulnsync.ingest.synchronizer import Synchronizer
from vulnsync.models import AnalysisSummary, Component, Vulnerability
from vulnsync.store import VulnerabilityStore

logger = logging.getLogger(__name__)

ANALYZER = "SNYK_ANALYZER"


def chunk(items: Sequence, size: int) -> Iterator[Sequence]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


class FetchDispatcher:
    """Look up components page by page with a bounded pool of workers.

    Pages run sequentially. Within a page, components are grouped into
    batches of ``concurrency`` items and at most ``concurrency`` workers
    drain the batch queue; each worker handles its batch in order.
    """

    def __init__(
        self,
        client: SnykClient,
        store: VulnerabilityStore,
        normalizer: Normalizer,
        synchronizer: Synchronizer | None = None,
        notifier: IndexNotifier | None = None,
        page_size: int = 100,
        concurrency: int = 10,
        analyzer: str = ANALYZER,
    ):
        self.client = client
        self.store = store
        self.normalizer = normalizer
        self.synchronizer = synchronizer or Synchronizer()
        self.notifier = notifier or IndexNotifier()
        self.page_size = page_size
        self.concurrency = concurrency
        self.analyzer = analyzer

    async def run(self, components: Sequence[Component]) -> AnalysisSummary:
        summary = AnalysisSummary(components_submitted=len(components))
        for number, page in enumerate(chunk(components, self.page_size), start=1):
            logger.debug("Dispatching page %d (%d components)", number, len(page))
            await self._run_page(page, summary)
        return summary

    async def _run_page(self, page: Sequence[Component], summary: AnalysisSummary) -> None:
        queue: asyncio.Queue[Sequence[Component]] = asyncio.Queue()
        for batch in chunk(page, self.concurrency):
            queue.put_nowait(batch)

        workers = [
            asyncio.create_task(self._worker(queue, summary))
            for _ in range(min(self.concurrency, queue.qsize()))
        ]
        await asyncio.gather(*workers)

    async def _worker(self, queue: asyncio.Queue, summary: AnalysisSummary) -> None:
        while True:
            try:
                batch = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            for component in batch:
                try:
                    await self.process(component, summary)
                except Exception as exc:
                    logger.exception("Unexpected failure analyzing component %s", component.uuid)
                    summary.errors.append(f"{component.uuid}: {exc}")
            queue.task_done()

    async def process(self, component: Component, summary: AnalysisSummary) -> list[Vulnerability]:
        """Fetch, normalize and synchronize one component's vulnerabilities."""
        coordinate = component.coordinate
        if coordinate is None:
            logger.warning("Component %s has no usable purl - skipping", component.uuid)
            summary.errors.append(f"{component.uuid}: no usable purl")
            return []

        try:
            body = await self.client.get_package_issues(coordinate)
        except FetchError as exc:
            logger.warning("Lookup failed for %s: %s", component.purl, exc)
            summary.errors.append(f"{component.purl}: {exc}")
            return []

        synchronized, errors = await asyncio.to_thread(self._store_results, component, body)
        summary.components_analyzed += 1
        summary.errors.extend(errors)
        for vulnerability in synchronized:
            self.notifier.commit("vulnerability")
            summary.vulnerabilities_synchronized += 1
        return synchronized

    def _store_results(self, component: Component, body: dict) -> tuple[list[Vulnerability], list[str]]:
        """Runs in a worker thread with a session scoped to this component."""
        synchronized: list[Vulnerability] = []
        errors: list[str] = []
        with self.store.session() as session:
            for record in self.normalizer.decode(body):
                label = record.vuln_id or "<missing id>"
                try:
                    normalized = self.normalizer.normalize_record(
                        record, self.normalizer.package_url(record, component), session,
                    )
                    # attribution commits together with the vulnerability
                    with session.transaction():
                        vulnerability = self.synchronizer.synchronize(session, normalized)
                        session.add_vulnerability(vulnerability.id, component.uuid, self.analyzer)
                except PayloadError as exc:
                    logger.warning("Skipping vulnerability for %s: %s", component.purl, exc)
                    errors.append(f"{component.purl}: {exc}")
                    continue
                except StoreError as exc:
                    logger.error("Failed to store %s for %s: %s", label, component.purl, exc)
                    errors.append(f"{component.purl} {label}: {exc}")
                    continue
                logger.info("Vulnerability %s added to component %s", vulnerability.vuln_id, component.name or component.uuid)
                synchronized.append(vulnerability)
        return synchronized, errors
