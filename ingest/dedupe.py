import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from ingest.models import CandidateItem

log = logging.getLogger("feedkeeper.dedupe")


@dataclass
class ExistingIndex:
    """Links, GUIDs and titles already stored for one feed (empty values excluded)."""
    links: Set[str] = field(default_factory=set)
    guids: Set[str] = field(default_factory=set)
    titles: Set[str] = field(default_factory=set)

    @classmethod
    def from_rows(cls, rows: Iterable) -> "ExistingIndex":
        """Build from ``(link, guid, title)`` tuples."""
        idx = cls()
        for link, guid, title in rows:
            idx.add(link, guid, title)
        return idx

    def add(self, link: Optional[str], guid: Optional[str], title: Optional[str]) -> None:
        if link:
            self.links.add(link)
        if guid:
            self.guids.add(guid)
        if title:
            self.titles.add(title)


class DuplicateDetector:
    """Filters candidates already known for a feed.

    Checks in order: link, then GUID, then title (loose, for feeds with poor
    link/GUID hygiene). Accepted candidates join the index immediately so
    duplicates inside the same batch are caught too.
    """

    def duplicate_reason(self, item: CandidateItem, index: ExistingIndex) -> Optional[str]:
        if item.link and item.link in index.links:
            return "duplicate link"
        if item.guid and item.guid in index.guids:
            return "duplicate guid"
        if item.title and item.title in index.titles:
            return "duplicate title"
        return None

    def filter(self, candidates: List[CandidateItem], existing: ExistingIndex) -> List[CandidateItem]:
        accepted: List[CandidateItem] = []
        for item in candidates:
            reason = self.duplicate_reason(item, existing)
            if reason:
                log.debug("Doublon ignore (%s): %s", reason, item.title)
                continue
            accepted.append(item)
            existing.add(item.link, item.guid, item.title)
        log.info("Dedoublonnage: %d/%d candidats retenus.", len(accepted), len(candidates))
        return accepted
