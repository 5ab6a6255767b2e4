"""
Operator-driven removal of duplicate records.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

import structlog

from catalogcrawl.errors import StoreError
from catalogcrawl.models import CatalogItem, DuplicateGroup
from catalogcrawl.observability.metrics import METRICS
from catalogcrawl.protocols import CatalogStoreProtocol, GroupSelector

logger = structlog.get_logger(__name__)


@dataclass
class ResolutionReport:
    """What happened to each group the resolver was given."""

    groups_reviewed: int = 0
    groups_untouched: int = 0
    deleted: List[Tuple[str, str]] = field(default_factory=list)
    already_absent: List[Tuple[str, str]] = field(default_factory=list)
    planned: List[Tuple[str, str]] = field(default_factory=list)
    failures: List[Tuple[Tuple[str, str], str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class DuplicateResolver:
    """
    Deletes exactly the members a selector picks, by composite key.

    There is no implicit retention policy: an empty selection leaves the group
    as it is. A failed deletion is recorded in the report and the remaining
    members and groups are still processed.
    """

    def __init__(self, store: CatalogStoreProtocol, selector: GroupSelector, *, dry_run: bool = False):
        self.store = store
        self.selector = selector
        self.dry_run = dry_run

    async def _select(self, group: DuplicateGroup) -> List[int]:
        selection = self.selector(group)
        if inspect.isawaitable(selection):
            selection = await selection
        chosen: List[int] = []
        for index in selection:
            if not 0 <= index < len(group):
                raise ValueError(f"Selection index {index} out of range for group of {len(group)}")
            if index not in chosen:
                chosen.append(index)
        return chosen

    async def _delete(self, member: CatalogItem, report: ResolutionReport) -> None:
        key = member.composite_key
        if self.dry_run:
            report.planned.append(key)
            logger.info("Would delete", url=key[0], scraped_at=key[1])
            return
        try:
            removed = await self.store.delete(*key)
        except StoreError as e:
            report.failures.append((key, str(e)))
            logger.error("Delete failed", url=key[0], scraped_at=key[1], error=str(e))
            return
        if removed:
            report.deleted.append(key)
            METRICS["duplicates_deleted"].inc()
            logger.info("Deleted duplicate", url=key[0], scraped_at=key[1])
        else:
            report.already_absent.append(key)
            logger.info("Already absent", url=key[0], scraped_at=key[1])

    async def resolve_group(self, group: DuplicateGroup, report: ResolutionReport) -> None:
        report.groups_reviewed += 1
        chosen = await self._select(group)
        if not chosen:
            report.groups_untouched += 1
            logger.info("Group left untouched", url=group.business_key, members=len(group))
            return
        for index in chosen:
            await self._delete(group.members[index], report)

    async def resolve(self, groups: Iterable[DuplicateGroup]) -> ResolutionReport:
        report = ResolutionReport()
        for group in groups:
            await self.resolve_group(group, report)
        logger.info(
            "Reconciliation finished",
            groups=report.groups_reviewed,
            untouched=report.groups_untouched,
            deleted=len(report.deleted),
            already_absent=len(report.already_absent),
            planned=len(report.planned),
            failures=len(report.failures),
            dry_run=self.dry_run,
        )
        return report
