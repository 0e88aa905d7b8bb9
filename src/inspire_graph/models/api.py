"""INSPIRE APIレスポンスのスキーマ.

APIの境界で検証し, 形式の崩れた要素はここで除去・正規化する.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _objects(value: Any) -> list[dict[str, Any]]:
    """辞書要素だけを残す."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _strings(value: Any) -> list[str]:
    """空でない文字列要素だけを残す."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _doi_values(value: Any) -> list[str]:
    """文字列または{value: ...}形式のDOIを文字列に揃える."""
    if not isinstance(value, list):
        return []
    dois: list[str] = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("value")
        if isinstance(item, str) and item.strip():
            dois.append(item.strip())
    return dois


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _optional_str(value: Any) -> str | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


ObjectList = Annotated[list[dict[str, Any]], BeforeValidator(_objects)]
StringList = Annotated[list[str], BeforeValidator(_strings)]
DoiList = Annotated[list[str], BeforeValidator(_doi_values)]
OptionalInt = Annotated[int | None, BeforeValidator(_optional_int)]
OptionalStr = Annotated[str | None, BeforeValidator(_optional_str)]


class ApiModel(BaseModel):
    """未知のフィールドは無視する."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TitleItem(ApiModel):
    """タイトル."""

    title: OptionalStr = None


class AuthorItem(ApiModel):
    """著者."""

    full_name: OptionalStr = None
    full_name_unicode_normalized: OptionalStr = None
    name: OptionalStr = None

    @property
    def display_name(self) -> str | None:
        """表示名."""
        return self.full_name or self.full_name_unicode_normalized or self.name


class ArxivEprint(ApiModel):
    """arXiv eprint."""

    value: OptionalStr = None
    categories: StringList = Field(default_factory=list)


def _arxiv_items(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    items: list[dict[str, Any]] = []
    for item in value:
        if isinstance(item, str):
            items.append({"value": item})
        elif isinstance(item, dict):
            if "value" not in item and "id" in item:
                item = {**item, "value": item["id"]}
            items.append(item)
    return items


class LiteratureMetadata(ApiModel):
    """文献レコードのメタデータ."""

    control_number: OptionalStr = None
    titles: Annotated[list[TitleItem], BeforeValidator(_objects)] = Field(default_factory=list)
    authors: Annotated[list[AuthorItem], BeforeValidator(_objects)] = Field(default_factory=list)
    author_count: OptionalInt = None
    earliest_date: OptionalStr = None
    citation_count: OptionalInt = None
    citation_count_without_self_citations: OptionalInt = None
    citation_count_wo_self_citations: OptionalInt = None
    publication_info: ObjectList = Field(default_factory=list)
    arxiv_eprints: Annotated[list[ArxivEprint], BeforeValidator(_arxiv_items)] = Field(default_factory=list)
    dois: DoiList = Field(default_factory=list)
    document_type: StringList = Field(default_factory=list)
    texkeys: StringList = Field(default_factory=list)
    collaborations: ObjectList = Field(default_factory=list)
    references: ObjectList = Field(default_factory=list)

    @property
    def first_title(self) -> str | None:
        """最初の空でないタイトル."""
        for item in self.titles:
            if item.title:
                return item.title
        return None

    @property
    def self_excluded_citations(self) -> int | None:
        """自己引用を除いた被引用数."""
        if self.citation_count_without_self_citations is not None:
            return self.citation_count_without_self_citations
        return self.citation_count_wo_self_citations

    @property
    def author_names(self) -> list[str]:
        """著者名リスト."""
        return [name for author in self.authors if (name := author.display_name)]

    def is_complete(self) -> bool:
        """タイトル・著者・被引用数が揃っているか."""
        has_authors = bool(self.authors) or bool(self.collaborations)
        return self.first_title is not None and has_authors and self.citation_count is not None


class LiteratureRecord(ApiModel):
    """文献レコード."""

    id: OptionalStr = None
    metadata: LiteratureMetadata = Field(default_factory=LiteratureMetadata)

    @property
    def recid(self) -> str | None:
        """レコードID."""
        return self.metadata.control_number or self.id


class SearchHits(ApiModel):
    """検索ヒット."""

    total: Annotated[int, BeforeValidator(lambda v: _optional_int(v) or 0)] = 0
    hits: Annotated[list[LiteratureRecord], BeforeValidator(_objects)] = Field(default_factory=list)


class SearchResponse(ApiModel):
    """検索レスポンス."""

    hits: SearchHits = Field(default_factory=SearchHits)


class RecordRef(ApiModel):
    """参照先レコードへのリンク."""

    ref: OptionalStr = Field(None, alias="$ref")


class ReferenceUrl(ApiModel):
    """参考文献のURL."""

    value: OptionalStr = None


def _reference_title(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("title")
    return _optional_str(value)


def _single_object(value: Any) -> dict[str, Any] | None:
    if isinstance(value, list):
        value = next((item for item in value if isinstance(item, dict)), None)
    return value if isinstance(value, dict) else None


class ReferenceData(ApiModel):
    """参考文献の書誌情報."""

    label: OptionalStr = None
    title: Annotated[str | None, BeforeValidator(_reference_title)] = None
    titles: Annotated[list[TitleItem], BeforeValidator(_objects)] = Field(default_factory=list)
    authors: Annotated[list[AuthorItem], BeforeValidator(_objects)] = Field(default_factory=list)
    collaborations: StringList = Field(default_factory=list)
    publication_info: Annotated[dict[str, Any] | None, BeforeValidator(_single_object)] = None
    arxiv_eprint: OptionalStr = None
    dois: DoiList = Field(default_factory=list)
    texkeys: StringList = Field(default_factory=list)
    urls: Annotated[list[ReferenceUrl], BeforeValidator(_objects)] = Field(default_factory=list)
    citation_count: OptionalInt = None
    citation_count_without_self_citations: OptionalInt = None


class ReferenceWrapper(ApiModel):
    """metadata.referencesの1要素."""

    reference: Annotated[ReferenceData, BeforeValidator(lambda v: v if isinstance(v, dict) else {})] = Field(
        default_factory=ReferenceData
    )
    record: Annotated[RecordRef | None, BeforeValidator(lambda v: v if isinstance(v, dict) else None)] = None
