"""APIレスポンスからReferenceEntryへの変換."""

import re
from collections.abc import Callable
from typing import Any

from inspire_graph.config import settings
from inspire_graph.models.api import LiteratureMetadata, LiteratureRecord, ReferenceData, ReferenceWrapper
from inspire_graph.models.graph import ArxivDetails, PublicationNote, ReferenceEntry
from inspire_graph.utils.math_title import clean_math_title

TitleCleaner = Callable[[str | None], str]

ARXIV_ABS_URL = "https://arxiv.org/abs"
DOI_ORG_URL = "https://doi.org"

UNKNOWN_AUTHOR = "Unknown author"

# 保持する著者名の上限
AUTHOR_LIMIT = 10
# 表示する著者数
DISPLAY_AUTHORS = 3
# これを超える共著者数は筆頭著者 + et al.
LARGE_COLLABORATION_THRESHOLD = 20
# これより短いタイトルは切り詰められている可能性がある
SHORT_TITLE_LENGTH = 20

_RECORD_REF = re.compile(r"/(\d+)(?:\?.*)?$")
_RECORD_URL = re.compile(r"(?:literature|record)/(\d+)")
_NOTE_FIELDS = ("material", "note", "pubinfo_freetext")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


# ----------------------------------------------------------------------
# 識別子
# ----------------------------------------------------------------------


def extract_recid_from_ref(ref: str | None) -> str | None:
    """record.$refからrecidを抽出."""
    if not ref:
        return None
    match = _RECORD_REF.search(ref)
    return match.group(1) if match else None


def extract_recid_from_urls(urls: list[str]) -> str | None:
    """URLリストからrecidを抽出."""
    for url in urls:
        match = _RECORD_URL.search(url or "")
        if match:
            return match.group(1)
    return None


def normalize_arxiv_id(raw: str | None) -> str | None:
    """arXiv IDの正規化（arXiv:接頭辞を除去）."""
    if not raw or not raw.strip():
        return None
    value = re.sub(r"^arxiv\s*:", "", raw.strip(), flags=re.IGNORECASE).strip()
    return value or None


def arxiv_from_metadata(metadata: LiteratureMetadata) -> ArxivDetails | None:
    """メタデータのarxiv_eprintsからarXiv情報を抽出."""
    for eprint in metadata.arxiv_eprints:
        arxiv_id = normalize_arxiv_id(eprint.value)
        if arxiv_id or eprint.categories:
            return ArxivDetails(id=arxiv_id, categories=eprint.categories)
    return None


# ----------------------------------------------------------------------
# 著者
# ----------------------------------------------------------------------


def format_author_name(name: str) -> str:
    """「姓, 名」を「イニシャル 姓」に整形."""
    name = name.strip()
    if "," not in name:
        return name
    last, first = (part.strip() for part in name.split(",", 1))
    if not first:
        return last
    initials = []
    for token in first.split():
        parts = [p for p in token.split("-") if p]
        initials.append("-".join(f"{p[0]}." for p in parts))
    return f"{' '.join(initials)} {last}".strip()


def format_authors(authors: list[str], total: int | None = None) -> str:
    """著者表示テキスト."""
    has_others = any(name.lower() == "others" for name in authors)
    formatted = [format_author_name(n) for n in authors if n.lower() != "others" and n.strip()]
    if not formatted:
        return UNKNOWN_AUTHOR

    actual_total = total if total is not None else len(authors)
    if actual_total > LARGE_COLLABORATION_THRESHOLD:
        return f"{formatted[0]} et al."
    if len(formatted) > DISPLAY_AUTHORS or actual_total > len(formatted) or has_others:
        return f"{', '.join(formatted[:DISPLAY_AUTHORS])} et al."
    return ", ".join(formatted)


def last_name(name: str) -> str:
    """姓を取り出す."""
    name = name.strip()
    if "," in name:
        return name.split(",", 1)[0].strip()
    parts = name.split()
    return parts[-1] if parts else name


def build_author_label(authors: list[str], total: int | None, year: str | None) -> str | None:
    """ノード用の「姓 et al. (年)」ラベル."""
    if not authors:
        return None
    label = last_name(authors[0])
    if (total if total is not None else len(authors)) > 1:
        label = f"{label} et al."
    if year:
        label = f"{label} ({year})"
    return label


# ----------------------------------------------------------------------
# 出版情報
# ----------------------------------------------------------------------


def _note_label(info: dict[str, Any]) -> str | None:
    values: list[str] = []
    for field in _NOTE_FIELDS:
        value = info.get(field)
        if isinstance(value, str):
            values.append(value)
        elif isinstance(value, list):
            values.extend(v for v in value if isinstance(v, str))
    for value in values:
        lowered = value.lower()
        if "erratum" in lowered:
            return "Erratum"
        if "addendum" in lowered:
            return "Addendum"
        if "corrigendum" in lowered:
            return "Corrigendum"
    return None


def split_publication_info(
    raw: list[dict[str, Any]] | dict[str, Any] | None,
) -> tuple[dict[str, Any] | None, list[PublicationNote] | None]:
    """主たる出版情報と正誤表等に分ける."""
    if not raw:
        return None, None
    infos = [info for info in (raw if isinstance(raw, list) else [raw]) if info]
    if not infos:
        return None, None
    primary = next((info for info in infos if not _note_label(info)), infos[0])
    errata = [
        PublicationNote(info=info, label=label)
        for info in infos
        if info is not primary and (label := _note_label(info))
    ]
    return primary, errata or None


def format_publication_info(
    info: dict[str, Any] | None,
    fallback_year: str | None = None,
    omit_journal: bool = False,
) -> str:
    """「誌名 巻 (年) ページ」形式."""
    if not info:
        return ""
    parts: list[str] = []
    journal = info.get("journal_title") or info.get("journal_title_abbrev")
    if journal and not omit_journal:
        parts.append(str(journal))
    if info.get("journal_volume"):
        parts.append(str(info["journal_volume"]))
    year = info.get("year") or fallback_year
    if year and (parts or omit_journal):
        parts.append(f"({year})")
    page = info.get("artid") or info.get("page_start")
    if page:
        parts.append(str(page))
    return " ".join(parts)


def build_publication_summary(
    info: dict[str, Any] | None,
    arxiv: ArxivDetails | None,
    fallback_year: str | None = None,
    errata: list[PublicationNote] | None = None,
) -> str | None:
    """出版情報とarXiv情報の要約."""
    main = format_publication_info(info, fallback_year)
    arxiv_tag = f"[arXiv:{arxiv.id}]" if arxiv and arxiv.id else ""
    summary = " ".join(part for part in (main, arxiv_tag) if part)

    notes = [
        f"{note.label}: {text}"
        for note in errata or []
        if (text := format_publication_info(note.info, fallback_year, omit_journal=True))
    ]
    if notes:
        errata_text = f"[{'; '.join(notes)}]"
        summary = f"{summary} {errata_text}" if summary else errata_text
    return summary or None


def build_fallback_url(doi: str | None, arxiv: ArxivDetails | None) -> str | None:
    """INSPIRE以外の代替URL（DOI優先, 次にarXiv）."""
    if doi:
        return f"{DOI_ORG_URL}/{doi}"
    if arxiv and arxiv.id:
        return f"{ARXIV_ABS_URL}/{arxiv.id}"
    return None


# ----------------------------------------------------------------------
# タイトル
# ----------------------------------------------------------------------


def build_smart_title(entry: ReferenceEntry) -> str:
    """タイトルがない場合の代替表示.

    優先順位: タイトル, 著者 (年), arXiv ID, DOI, 出版情報, recid
    """
    if entry.title:
        return entry.title
    if entry.authors and entry.year:
        return f"{entry.author_text} ({entry.year})"
    if entry.arxiv_details and entry.arxiv_details.id:
        return f"arXiv:{entry.arxiv_details.id}"
    if entry.doi:
        short = f"{entry.doi[:25]}..." if len(entry.doi) > 25 else entry.doi
        return f"DOI: {short}"
    if entry.summary:
        return entry.summary
    return f"INSPIRE:{entry.recid}"


def _normalize_token(value: str) -> str:
    return _NON_ALNUM.sub("", value.lower())


def is_placeholder_title(entry: ReferenceEntry) -> bool:
    """代替表示や出版情報がタイトル欄に入っているかどうか."""
    title = entry.title.strip()
    if not title:
        return True
    if entry.authors and entry.year and title == f"{entry.author_text} ({entry.year})":
        return True
    if title.startswith(("arXiv:", "DOI: ", "INSPIRE:")):
        return True
    if entry.summary:
        normalized = _normalize_token(title)
        if normalized and normalized in _normalize_token(entry.summary):
            if re.search(r"\d", title) and len(title) <= 80:
                return True
    return False


def is_truncated_title(title: str) -> bool:
    """参考文献APIで$の位置で切れたタイトルかどうか."""
    return bool(title) and (title.endswith((" ", "-", "—")) or len(title) < SHORT_TITLE_LENGTH)


# ----------------------------------------------------------------------
# 変換
# ----------------------------------------------------------------------


def _reference_title(reference: ReferenceData) -> str | None:
    if reference.title:
        return reference.title
    return next((item.title for item in reference.titles if item.title), None)


def build_reference_entry(
    wrapper: ReferenceWrapper,
    clean_title: TitleCleaner = clean_math_title,
) -> ReferenceEntry:
    """metadata.referencesの1要素をエントリに変換."""
    reference = wrapper.reference
    urls = [url.value for url in reference.urls if url.value]
    recid = extract_recid_from_ref(wrapper.record.ref if wrapper.record else None) or extract_recid_from_urls(urls)

    names = [name for author in reference.authors if (name := author.display_name)]
    if not names and reference.collaborations:
        names = [f"{c} Collaboration" for c in reference.collaborations]
    total_authors = len(names) or None
    authors = names[:AUTHOR_LIMIT]

    arxiv_id = normalize_arxiv_id(reference.arxiv_eprint)
    arxiv = ArxivDetails(id=arxiv_id) if arxiv_id else None

    info = reference.publication_info or {}
    year = None
    if info.get("year") is not None:
        year = str(info["year"])
    elif info.get("date"):
        year = str(info["date"])[:4]

    primary, errata = split_publication_info(reference.publication_info)
    doi = reference.dois[0] if reference.dois else None

    inspire_url = f"{settings.inspire.literature_url}/{recid}" if recid else (urls[0] if urls else None)
    entry = ReferenceEntry(
        recid=recid,
        label=reference.label,
        title=clean_title(_reference_title(reference)),
        year=year,
        authors=authors,
        total_authors=total_authors,
        author_text=format_authors(authors, total_authors),
        citation_count=reference.citation_count,
        citation_count_without_self=reference.citation_count_without_self_citations,
        publication_info=primary,
        publication_info_errata=errata,
        arxiv_details=arxiv,
        doi=doi,
        summary=build_publication_summary(primary, arxiv, year, errata),
        inspire_url=inspire_url,
        fallback_url=build_fallback_url(doi, arxiv),
        texkey=reference.texkeys[0] if reference.texkeys else None,
    )
    return entry


def build_entry_from_record(
    record: LiteratureRecord,
    clean_title: TitleCleaner = clean_math_title,
) -> ReferenceEntry:
    """検索ヒットをエントリに変換."""
    metadata = record.metadata
    recid = record.recid

    primary, errata = split_publication_info(metadata.publication_info)
    arxiv = arxiv_from_metadata(metadata)
    earliest = metadata.earliest_date
    year = earliest[:4] if earliest else (str(primary["year"]) if primary and primary.get("year") else None)

    names = metadata.author_names
    total_authors = metadata.author_count if metadata.author_count is not None else (len(names) or None)
    authors = names[:AUTHOR_LIMIT]
    doi = metadata.dois[0] if metadata.dois else None

    entry = ReferenceEntry(
        recid=recid,
        title=clean_title(metadata.first_title),
        year=year,
        earliest_date=earliest,
        authors=authors,
        total_authors=total_authors,
        author_text=format_authors(authors, total_authors),
        citation_count=metadata.citation_count,
        citation_count_without_self=metadata.self_excluded_citations,
        publication_info=primary,
        publication_info_errata=errata,
        arxiv_details=arxiv,
        doi=doi,
        document_type=metadata.document_type or None,
        summary=build_publication_summary(primary, arxiv, year, errata),
        inspire_url=f"{settings.inspire.literature_url}/{recid}" if recid else None,
        fallback_url=build_fallback_url(doi, arxiv),
        texkey=metadata.texkeys[0] if metadata.texkeys else None,
    )
    entry.title = build_smart_title(entry)
    return entry


def needs_enrichment(entry: ReferenceEntry) -> bool:
    """補完が必要かどうか."""
    if not entry.recid:
        return False
    return (
        entry.citation_count is None
        or not entry.title
        or is_placeholder_title(entry)
        or not entry.authors
    )


def apply_metadata(
    entry: ReferenceEntry,
    metadata: LiteratureMetadata,
    clean_title: TitleCleaner = clean_math_title,
) -> None:
    """メタデータでエントリを補完（破壊的）."""
    if metadata.citation_count is not None:
        entry.citation_count = metadata.citation_count
    if metadata.self_excluded_citations is not None:
        entry.citation_count_without_self = metadata.self_excluded_citations
    if metadata.document_type:
        entry.document_type = list(metadata.document_type)

    if not entry.title or is_truncated_title(entry.title) or is_placeholder_title(entry):
        new_title = metadata.first_title
        if new_title:
            entry.title = clean_title(new_title)

    names = metadata.author_names
    if not entry.authors and names:
        entry.total_authors = metadata.author_count if metadata.author_count is not None else len(names)
        entry.authors = names[:AUTHOR_LIMIT]
        entry.author_text = format_authors(entry.authors, entry.total_authors)
    elif metadata.author_count is not None and metadata.author_count > (entry.total_authors or 0):
        entry.total_authors = metadata.author_count
        entry.author_text = format_authors(entry.authors, entry.total_authors)

    if not entry.year and metadata.earliest_date:
        entry.year = metadata.earliest_date[:4]
    if not entry.earliest_date and metadata.earliest_date:
        entry.earliest_date = metadata.earliest_date

    if entry.arxiv_details is None:
        entry.arxiv_details = arxiv_from_metadata(metadata)
    if not entry.doi and metadata.dois:
        entry.doi = metadata.dois[0]
    if not entry.texkey and metadata.texkeys:
        entry.texkey = metadata.texkeys[0]

    primary, errata = split_publication_info(metadata.publication_info)
    if primary or entry.arxiv_details or errata:
        entry.publication_info = primary or entry.publication_info
        entry.publication_info_errata = errata
        entry.summary = build_publication_summary(
            entry.publication_info, entry.arxiv_details, entry.year, entry.publication_info_errata
        )
    if not entry.fallback_url:
        entry.fallback_url = build_fallback_url(entry.doi, entry.arxiv_details)
    if not entry.title:
        entry.title = build_smart_title(entry)
