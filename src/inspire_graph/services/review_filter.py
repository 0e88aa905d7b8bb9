"""レビュー論文の判定."""

import re
from collections.abc import Iterable
from typing import Any

from inspire_graph.models.graph import ReferenceEntry

PDG_RPP_TITLE = re.compile(r"\breview of particle physics\b", re.IGNORECASE)
REVIEW_DOC_TYPE = re.compile(r"\breview\b", re.IGNORECASE)

# レビュー誌の正規化キー（部分一致）
REVIEW_JOURNAL_KEY_SUBSTRINGS = (
    "rmp",
    "revmodphys",
    "reviewsofmodernphysics",
    "physrep",
    "physrept",
    "physicsreports",
    "ppnp",
    "progpartnuclphys",
    "progressinparticleandnuclearphysics",
    "rpp",
    "repprogphys",
    "reptprogphys",
    "reportsonprogressinphysics",
)

# Annual Review系（前方一致）
ANNUAL_REVIEW_KEY_PREFIXES = ("annualreview", "annurev", "annrev")

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_journal_key(value: str) -> str:
    """誌名を英数字のみの小文字キーにする."""
    return _NON_ALNUM.sub("", value.lower())


def _journal_candidates(publication_info: Any) -> list[str]:
    infos: Iterable[Any]
    if isinstance(publication_info, dict):
        infos = [publication_info]
    elif isinstance(publication_info, list):
        infos = publication_info
    else:
        return []

    titles: list[str] = []
    for info in infos:
        if not isinstance(info, dict):
            continue
        for field in ("journal_title", "journal_title_abbrev"):
            value = info.get(field)
            if isinstance(value, str) and value.strip():
                titles.append(value)
    return titles


def is_pdg_review_title(title: str | None) -> bool:
    """PDGのReview of Particle Physicsかどうか."""
    return bool(title) and PDG_RPP_TITLE.search(title or "") is not None


def is_review_document_type(document_type: list[str] | None) -> bool:
    """文献種別がreviewかどうか."""
    return any(REVIEW_DOC_TYPE.search(t) for t in document_type or [])


def is_review_journal(publication_info: Any) -> bool:
    """レビュー誌に掲載されているかどうか."""
    for candidate in _journal_candidates(publication_info):
        key = normalize_journal_key(candidate)
        if not key:
            continue
        if key.startswith(ANNUAL_REVIEW_KEY_PREFIXES):
            return True
        if any(fragment in key for fragment in REVIEW_JOURNAL_KEY_SUBSTRINGS):
            return True
    return False


def is_review_article(entry: ReferenceEntry) -> bool:
    """レビュー論文らしいかどうか."""
    return is_review_document_type(entry.document_type) or is_review_journal(entry.publication_info)


def keep_entry(entry: ReferenceEntry, include_reviews: bool) -> bool:
    """グラフに残すかどうか.

    PDGのReview of Particle Physicsは常に除外する.
    """
    if is_pdg_review_title(entry.title):
        return False
    return include_reviews or not is_review_article(entry)
