import datetime
import logging
from typing import Dict, List, Optional

from .models import (
    LinkVerdict,
    Occurrence,
    Outcome,
    PageLinkIssue,
    PageRecord,
    PageSummary,
    ReferenceKind,
    Report,
    ReportSummary,
)
from .utils import try_normalize

logger = logging.getLogger(__name__)


class ResultAggregator:
    """
    Folds page records and link verdicts into a Report.

    Events may arrive in any order and interleaved; everything is keyed by canonical
    URL and sorted when the report is built, so the same inputs always give the same report.
    """

    def __init__(self, start_url: str):
        self.start_url = start_url
        self._pages: Dict[str, PageRecord] = {}
        self._aliases: Dict[str, str] = {}
        self._verdicts: Dict[str, LinkVerdict] = {}

    def add_page(self, record: PageRecord) -> None:
        if record.url in self._pages:
            logger.warning(f'Duplicate page record ignored: {record.url}')
            return
        self._pages[record.url] = record

        # failed targets are aliased too; links to them resolve to the broken page
        if record.final_url:
            final_canonical = try_normalize(record.final_url)
            if final_canonical and final_canonical != record.url:
                # lowest source URL wins regardless of arrival order
                current = self._aliases.get(final_canonical)
                self._aliases[final_canonical] = min(current, record.url) if current else record.url

    def add_verdict(self, verdict: LinkVerdict) -> None:
        self._verdicts[verdict.url] = verdict

    @property
    def page_count(self) -> int:
        return len(self._pages)

    def _page_for(self, canonical: str) -> Optional[PageRecord]:
        record = self._pages.get(canonical)
        if record is None and canonical in self._aliases:
            record = self._pages.get(self._aliases[canonical])
        return record

    def _collect_occurrences(self) -> Dict[str, List[Occurrence]]:
        occurrences: Dict[str, List[Occurrence]] = {}
        for page_url in sorted(self._pages):
            for reference in self._pages[page_url].references:
                canonical = try_normalize(reference.url)
                if not canonical:
                    continue
                occurrences.setdefault(canonical, []).append(
                    Occurrence(page=page_url, text=reference.text, kind=reference.kind)
                )
        return occurrences

    def _resolve(self, canonical: str, occurrences: List[Occurrence]) -> Optional[LinkVerdict]:
        verdict = self._verdicts.get(canonical)
        if verdict is not None:
            return verdict.model_copy(update={'occurrences': occurrences or list(verdict.occurrences)})

        page = self._page_for(canonical)
        if page is None:
            return None

        # crawled pages are not probed again, their fetch result stands in for a check
        if page.ok:
            return LinkVerdict(
                url=canonical, outcome=Outcome.OK, status_code=page.status_code, checked=False, occurrences=occurrences
            )
        return LinkVerdict(
            url=canonical,
            outcome=Outcome.BROKEN,
            status_code=page.status_code,
            error_kind=page.error_kind,
            message=page.error,
            checked=False,
            occurrences=occurrences,
        )

    def build_report(
        self,
        discovery_method: str = 'traditional',
        spa_warning: Optional[str] = None,
        start_time: Optional[datetime.datetime] = None,
        end_time: Optional[datetime.datetime] = None,
    ) -> Report:
        occurrences = self._collect_occurrences()
        targets = sorted(set(occurrences) | set(self._verdicts))

        resolved: Dict[str, LinkVerdict] = {}
        for canonical in targets:
            verdict = self._resolve(canonical, occurrences.get(canonical, []))
            if verdict is not None:
                resolved[canonical] = verdict

        broken = [v for v in resolved.values() if v.outcome is Outcome.BROKEN]
        warnings = [v for v in resolved.values() if v.outcome is Outcome.WARNING]
        redirects = [v for v in resolved.values() if v.outcome is Outcome.REDIRECT]
        checked = sum(1 for v in resolved.values() if v.checked)

        summary = ReportSummary(
            total_pages=len(self._pages),
            total_links=len(targets),
            links_checked=checked,
            links_skipped=len(targets) - checked,
            broken_links=len(broken),
            warnings=len(warnings),
            redirects=len(redirects),
            working_links=sum(1 for v in resolved.values() if v.outcome is Outcome.OK),
            pages_with_errors=sum(1 for page in self._pages.values() if not page.ok),
            start_time=start_time,
            end_time=end_time,
        )
        if start_time and end_time:
            summary.duration_seconds = round((end_time - start_time).total_seconds(), 2)

        return Report(
            start_url=self.start_url,
            discovery_method=discovery_method,
            spa_warning=spa_warning,
            summary=summary,
            pages=[self._summarize_page(self._pages[url], resolved) for url in sorted(self._pages)],
            broken_links=broken,
            warnings=warnings,
            redirects=redirects,
        )

    def _summarize_page(self, record: PageRecord, resolved: Dict[str, LinkVerdict]) -> PageSummary:
        summary = PageSummary(
            url=record.url,
            title=record.title,
            status_code=record.status_code,
            error=record.error,
            source=record.source,
            total_references=len(record.references),
            links_count=sum(1 for r in record.references if r.kind is ReferenceKind.LINK),
            images_count=sum(1 for r in record.references if r.kind is ReferenceKind.IMAGE),
        )
        for reference in record.references:
            verdict = resolved.get(try_normalize(reference.url) or '')
            if verdict is None or verdict.outcome not in (Outcome.BROKEN, Outcome.WARNING):
                continue
            issue = PageLinkIssue(
                url=reference.url,
                text=reference.text,
                kind=reference.kind,
                outcome=verdict.outcome,
                status_code=verdict.status_code,
                message=verdict.message,
            )
            if verdict.outcome is Outcome.BROKEN:
                summary.broken_links.append(issue)
            else:
                summary.warnings.append(issue)
        return summary
