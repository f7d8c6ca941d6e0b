from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
)

from plu.errors import ExtractionCancelledError, PluError
from plu.extract.orchestrator import ExtractionOptions, ExtractionOrchestrator
from plu.extract.schema import BatchReport, RuleRecord
from plu.extract.zone_locator import detect_zone_codes

logger = logging.getLogger(__name__)


class MultiZoneExtractor:
    """
    Every zone of one regulation PDF. The document is downloaded once;
    a zone that fails is logged and skipped.
    """

    def __init__(self, orchestrator: ExtractionOrchestrator, max_workers: Optional[int] = None):
        self.orchestrator = orchestrator
        self.max_workers = max_workers or orchestrator.settings.max_parallel_zones

    def extract_all_zones(
        self, pdf_url: str, options: Optional[ExtractionOptions] = None
    ) -> List[RuleRecord]:
        return self.run(pdf_url, options).records

    def run(
        self,
        pdf_url: str,
        options: Optional[ExtractionOptions] = None,
        *,
        show_progress: bool = False,
    ) -> BatchReport:
        opts = options or ExtractionOptions()
        text, pdf_size = self.orchestrator.fetch_text(pdf_url, opts)
        zones = detect_zone_codes(text)
        logger.info("zones detected in %s: %s", pdf_url, ", ".join(zones) or "none")

        done: Dict[str, RuleRecord] = {}
        failed: Dict[str, str] = {}

        def process(zone: str) -> RuleRecord:
            return self.orchestrator.extract(
                pdf_url, zone, opts, document_text=text, pdf_size=pdf_size
            ).record

        def collect(zone: str, fut) -> None:
            try:
                done[zone] = fut.result()
            except ExtractionCancelledError:
                raise
            except (PluError, ValueError) as e:
                logger.warning("zone %s skipped: %s", zone, e)
                failed[zone] = str(e)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(process, z): z for z in zones}
            if show_progress:
                with Progress(
                    TextColumn("[bold]Zones[/bold]"),
                    BarColumn(),
                    MofNCompleteColumn(),
                    TimeElapsedColumn(),
                    transient=False,
                ) as progress:
                    task = progress.add_task("zones", total=len(futures))
                    for fut in as_completed(futures):
                        collect(futures[fut], fut)
                        progress.update(task, advance=1)
            else:
                for fut in as_completed(futures):
                    collect(futures[fut], fut)

        records = [done[z] for z in zones if z in done]
        logger.info("%d/%d zones extracted from %s", len(records), len(zones), pdf_url)
        return BatchReport(
            pdf_url=pdf_url,
            zones_detected=zones,
            records=records,
            failed_zones=failed,
        )
