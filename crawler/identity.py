"""
Entity identity and merge policy.

Row identity is a pure function of source, scope and external id, rendered
as ``<prefix>:<scope...>:<external_id>``. Because every crawler derives the
same key for the same real-world entity, upserts are idempotent and can run
concurrently from any number of workers.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_SEPARATOR = ":"


@dataclass(frozen=True)
class Source:
    """
    One external site with its own id space.
    """

    name: str
    prefix: str
    base_url: str
    region: str


FHSPB = Source(name="fhspb", prefix="spb", base_url="https://www.fhspb.ru", region="spb")
MIHF = Source(name="mihf", prefix="msk", base_url="https://stats.mihf.ru", region="msk")
JUNIOR = Source(name="junior", prefix="jr", base_url="https://junior.fhr.ru", region="rf")

SOURCES: dict[str, Source] = {source.name: source for source in (FHSPB, MIHF, JUNIOR)}
_SOURCES_BY_PREFIX: dict[str, Source] = {source.prefix: source for source in SOURCES.values()}


def get_source(name: str) -> Source:
    try:
        return SOURCES[name.strip().lower()]
    except KeyError:
        allowed = ", ".join(sorted(SOURCES))
        raise ValueError(f"Unknown source '{name}'. Allowed sources: {allowed}.") from None


def _check_component(kind: str, value: str) -> str:
    text = str(value).strip()
    if not text:
        raise ValueError(f"{kind} must not be empty")
    if _SEPARATOR in text:
        raise ValueError(f"{kind} must not contain '{_SEPARATOR}': {text!r}")
    return text


@dataclass(frozen=True)
class EntityRef:
    """
    Source-qualified composite identifier.
    """

    source: Source
    external_id: str
    scope: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "external_id", _check_component("external_id", self.external_id))
        object.__setattr__(
            self,
            "scope",
            tuple(_check_component("scope", part) for part in self.scope),
        )

    def render(self) -> str:
        return _SEPARATOR.join((self.source.prefix, *self.scope, self.external_id))

    def __str__(self) -> str:
        return self.render()

    @classmethod
    def parse(cls, text: str) -> EntityRef:
        parts = text.split(_SEPARATOR)
        if len(parts) < 2:
            raise ValueError(f"Not an entity reference: {text!r}")
        source = _SOURCES_BY_PREFIX.get(parts[0])
        if source is None:
            raise ValueError(f"Unknown source prefix in {text!r}")
        return cls(source=source, external_id=parts[-1], scope=tuple(parts[1:-1]))


def player_ref(source: Source, external_id: str) -> EntityRef:
    return EntityRef(source=source, external_id=external_id)


def tournament_ref(source: Source, external_id: str) -> EntityRef:
    return EntityRef(source=source, external_id=external_id)


def team_ref(source: Source, tournament_external_id: str, team_external_id: str) -> EntityRef:
    """
    Teams are scoped by tournament: the same club in two tournaments is two rows.
    """

    return EntityRef(
        source=source,
        external_id=team_external_id,
        scope=(strip_source_prefix(source, tournament_external_id),),
    )


def match_ref(source: Source, external_id: str) -> EntityRef:
    return EntityRef(source=source, external_id=external_id)


def strip_source_prefix(source: Source, value: str) -> str:
    """
    Accept either a rendered id (``msk:45-6-7``) or a bare external id.
    """

    prefix = f"{source.prefix}{_SEPARATOR}"
    return value[len(prefix):] if value.startswith(prefix) else value


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


@dataclass(frozen=True)
class MergePolicy:
    """
    Which columns identify a row and which are merged field by field.
    """

    table: str
    key_columns: tuple[str, ...]
    merge_columns: tuple[str, ...]
    # Replaced by every upsert (e.g. statistics snapshots).
    overwrite_columns: tuple[str, ...] = ()


def merge_values(
    existing: Mapping[str, Any] | None,
    incoming: Mapping[str, Any],
    policy: MergePolicy,
) -> dict[str, Any]:
    """
    Merge one incoming row onto the stored row.

    Each merge column takes the incoming value only if it is non-empty,
    otherwise keeps the stored value. This is the same rule the SQL
    repositories apply with ``COALESCE(NULLIF(excluded.col, ''), col)``.
    """

    if existing is None:
        return dict(incoming)

    merged = dict(existing)
    for column in policy.merge_columns:
        if column in incoming and not is_empty(incoming[column]):
            merged[column] = incoming[column]
    for column in policy.overwrite_columns:
        if column in incoming:
            merged[column] = incoming[column]
    return merged
