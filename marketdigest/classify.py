"""Keyword rules for species, severity and official template classification.

The decision logic here is independent of the keyword set: every rule reads
from a ``KeywordTables`` value. ``DEFAULT_KEYWORDS`` carries the Korean and
English vocabulary used for Korean livestock feeds; another table can be
loaded from a file (see ``config.load_keyword_tables``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping

Severity = Literal["LOW", "MID", "HIGH"]
TemplateId = Literal["OFFICIAL_DISEASE_UPDATE", "OFFICIAL_NOTICE"]

SEVERITIES: tuple[str, ...] = ("LOW", "MID", "HIGH")
SPECIES: tuple[str, ...] = ("BEEF", "PORK", "POULTRY", "DUCK", "EGG")


@dataclass(frozen=True)
class KeywordTables:
    species: Mapping[str, tuple[str, ...]]
    high_severity: tuple[str, ...]
    mid_severity: tuple[str, ...]
    disease: tuple[str, ...]


@dataclass(frozen=True)
class Classification:
    species: list[str]
    severity: Severity
    template_id: TemplateId


DEFAULT_KEYWORDS = KeywordTables(
    species={
        "BEEF": ("한우", "소고기", "우육", "beef"),
        "PORK": ("돼지", "돈육", "삼겹", "pork"),
        "POULTRY": ("닭", "계육", "가금", "chicken"),
        "DUCK": ("오리", "duck"),
        "EGG": ("계란", "달걀", "egg"),
    },
    high_severity=("확진", "발생", "긴급", "살처분", "경보", "outbreak", "confirmed", "emergency", "cull", "alert"),
    mid_severity=("주의", "우려", "확대", "caution", "concern", "expand"),
    # " ai" skips "ai" inside a word ("said", "rain") but still matches words
    # starting with it, so "farm aid" or "air" titles count as disease updates.
    disease=("asf", "돼지열병", "고병원성", " ai", "구제역", "hpai", "swine fever", "foot-and-mouth"),
)


def normalise_severity(value: Any) -> Severity | None:
    if not isinstance(value, str):
        return None
    s = value.strip().upper()
    if s in SEVERITIES:
        return s  # type: ignore[return-value]
    return None


def _lower(title: str | None) -> str:
    return (title or "").lower()


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(k in text for k in keywords)


def classify_species(title: str | None, tables: KeywordTables = DEFAULT_KEYWORDS) -> list[str]:
    """Species tags whose keywords occur in *title*, in table order."""
    t = _lower(title)
    return [sp for sp, words in tables.species.items() if _contains_any(t, words)]


def severity_from_title(
    title: str | None,
    default: Severity = "MID",
    tables: KeywordTables = DEFAULT_KEYWORDS,
) -> Severity:
    t = _lower(title)
    # HIGH must win when a title carries both kinds of keyword.
    if _contains_any(t, tables.high_severity):
        return "HIGH"
    if _contains_any(t, tables.mid_severity):
        return "MID"
    return default


def official_template_id(title: str | None, tables: KeywordTables = DEFAULT_KEYWORDS) -> TemplateId:
    if _contains_any(_lower(title), tables.disease):
        return "OFFICIAL_DISEASE_UPDATE"
    return "OFFICIAL_NOTICE"


def classify_title(
    title: str | None,
    *,
    default_severity: Severity = "MID",
    tables: KeywordTables = DEFAULT_KEYWORDS,
) -> Classification:
    return Classification(
        species=classify_species(title, tables),
        severity=severity_from_title(title, default_severity, tables),
        template_id=official_template_id(title, tables),
    )


def keyword_tables_from_dict(data: Mapping[str, Any]) -> KeywordTables:
    """Build tables from a decoded mapping. Raises ValueError on bad shapes.

    Keywords are lowercased so matching against the lowercased title works.
    """

    def words(v: Any, what: str) -> tuple[str, ...]:
        if not isinstance(v, list) or not all(isinstance(x, str) and x for x in v):
            raise ValueError(f"{what} must be a list of non-empty strings")
        return tuple(x.lower() for x in v)

    raw_species = data.get("species")
    if not isinstance(raw_species, Mapping) or not raw_species:
        raise ValueError("species must be a non-empty mapping")
    species: dict[str, tuple[str, ...]] = {}
    for sp in SPECIES:
        if sp in raw_species:
            species[sp] = words(raw_species[sp], f"species.{sp}")
    unknown = sorted(set(raw_species) - set(SPECIES))
    if unknown:
        raise ValueError(f"unknown species tags: {', '.join(map(str, unknown))}")

    return KeywordTables(
        species=species,
        high_severity=words(data.get("high_severity"), "high_severity"),
        mid_severity=words(data.get("mid_severity"), "mid_severity"),
        disease=words(data.get("disease"), "disease"),
    )
