"""Entry point for Snyk component analysis."""

from __future__ import annotations

import logging
import time

from vulnsync.config import Settings, settings
from vulnsync.credentials import CredentialProvider, SettingsCredentialProvider
from vulnsync.cwe import CweResolver
from vulnsync.events import IndexNotifier
from vulnsync.exceptions import ConfigurationError
from vulnsync.ingest.client import SnykClient
from vulnsync.ingest.dispatcher import FetchDispatcher
from vulnsync.ingest.normalizer import Normalizer, get_schema
from vulnsync.models import AnalysisEvent, AnalysisSummary, Component
from vulnsync.purl import is_fully_qualified
from vulnsync.store import VulnerabilityStore

logger = logging.getLogger(__name__)


class AnalysisTask:
    """Analyze components against the Snyk REST API and store the findings."""

    def __init__(
        self,
        store: VulnerabilityStore,
        credentials: CredentialProvider | None = None,
        notifier: IndexNotifier | None = None,
        cwe_resolver: CweResolver | None = None,
        config: Settings | None = None,
    ):
        self.config = config or settings
        self.store = store
        self.credentials = credentials or SettingsCredentialProvider(self.config)
        self.notifier = notifier or IndexNotifier()
        self.cwe_resolver = cwe_resolver or CweResolver()

    @staticmethod
    def is_capable(component: Component) -> bool:
        """Only components with a scheme, type, name and version can be looked up."""
        return is_fully_qualified(component.purl)

    async def inform(self, event: AnalysisEvent) -> AnalysisSummary | None:
        """Handle an analysis event.

        Returns None when the analyzer is disabled or the run could not
        start because of a configuration problem.
        """
        if not self.config.enabled:
            logger.debug("Snyk analysis disabled - ignoring event")
            return None

        start = time.monotonic()
        try:
            if not self.config.org_id:
                raise ConfigurationError("Please provide a Snyk organization id (VULNSYNC_ORG_ID)")
            if self.config.page_size < 1 or self.config.concurrency < 1:
                raise ConfigurationError(
                    f"page_size and concurrency must be positive "
                    f"(got {self.config.page_size} and {self.config.concurrency})"
                )
            schema = get_schema(self.config.api_version)
            token = self.credentials.get_token()
        except ConfigurationError as exc:
            logger.error("Snyk analysis aborted: %s", exc)
            return None

        logger.info("Starting Snyk vulnerability analysis task")
        components = [c for c in event.components if self.is_capable(c)]
        skipped = len(event.components) - len(components)
        if skipped:
            logger.debug("%d component(s) lack a fully qualified purl - skipped", skipped)

        if components:
            summary = await self.analyze(components, token, Normalizer(schema, self.cwe_resolver))
        else:
            summary = AnalysisSummary()

        summary.elapsed_seconds = time.monotonic() - start
        logger.info(
            "Snyk vulnerability analysis complete: %d/%d component(s), %d vulnerability record(s), "
            "%d error(s) in %.0f ms",
            summary.components_analyzed, summary.components_submitted,
            summary.vulnerabilities_synchronized, len(summary.errors),
            summary.elapsed_seconds * 1000,
        )
        return summary

    async def analyze(self, components: list[Component], token: str, normalizer: Normalizer) -> AnalysisSummary:
        async with SnykClient(
            token=token,
            api_url=self.config.api_base_url,
            org_id=self.config.org_id,
            api_version=self.config.api_version,
            auth_scheme=self.config.auth_scheme,
            timeout=self.config.request_timeout_seconds,
        ) as client:
            dispatcher = FetchDispatcher(
                client=client,
                store=self.store,
                normalizer=normalizer,
                notifier=self.notifier,
                page_size=self.config.page_size,
                concurrency=self.config.concurrency,
            )
            return await dispatcher.run(components)
