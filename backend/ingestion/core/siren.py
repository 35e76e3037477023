"""
Siren hypermedia entity model.

Entities are parsed fresh from every token-API response and queried by link
relation or class list. Class-list queries compare in order: the remote system
emits class tags in a stable order, so ["a", "b"] does not match ["b", "a"].
A plain string query checks membership instead.
"""
from __future__ import annotations

from typing import Any, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ingestion.core.errors import MissingFieldError, NotFoundError, SchemaViolationError

TagQuery = Union[str, Sequence[str]]


def _tags_match(tags: Optional[Sequence[Optional[str]]], query: TagQuery) -> bool:
    if tags is None:
        return False
    if isinstance(query, str):
        return query in tags
    return list(tags) == list(query)


def _query_of(class_: Optional[TagQuery], rel: Optional[TagQuery]) -> dict[str, Any]:
    if (class_ is None) == (rel is None):
        raise ValueError("Exactly one of class_ or rel must be given.")
    if class_ is not None:
        return {"class": class_ if isinstance(class_, str) else list(class_)}
    return {"rel": rel if isinstance(rel, str) else list(rel)}


class SirenLink(BaseModel):
    class_: Optional[list[str]] = Field(None, alias="class")
    rel: list[str]
    href: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SirenField(BaseModel):
    name: str
    type: str
    value: Any = None
    title: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class SirenAction(BaseModel):
    href: str
    method: str
    name: str
    fields: Optional[list[SirenField]] = None
    class_: Optional[list[str]] = Field(None, alias="class")
    title: Optional[str] = None
    type: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SirenEntity(BaseModel):
    """A node of the hypermedia graph."""

    class_: list[Optional[str]] = Field(..., alias="class")
    rel: Optional[list[str]] = None
    actions: Optional[list[SirenAction]] = None
    entities: Optional[list[SirenEntity]] = None
    links: Optional[list[SirenLink]] = None
    properties: Optional[dict[str, Any]] = None
    href: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    # Sub-entities

    def find_child(self, *, class_: Optional[TagQuery] = None, rel: Optional[TagQuery] = None) -> Optional[SirenEntity]:
        _query_of(class_, rel)
        for child in self.entities or []:
            if class_ is not None and _tags_match(child.class_, class_):
                return child
            if rel is not None and _tags_match(child.rel, rel):
                return child
        return None

    def get_child(self, *, class_: Optional[TagQuery] = None, rel: Optional[TagQuery] = None) -> SirenEntity:
        found = self.find_child(class_=class_, rel=rel)
        if found is None:
            query = _query_of(class_, rel)
            raise NotFoundError(f"No child entity matches {query}", query=query)
        return found

    # Links

    def find_link(self, *, class_: Optional[TagQuery] = None, rel: Optional[TagQuery] = None) -> Optional[SirenLink]:
        _query_of(class_, rel)
        for link in self.links or []:
            if class_ is not None and _tags_match(link.class_, class_):
                return link
            if rel is not None and _tags_match(link.rel, rel):
                return link
        return None

    def get_link(self, *, class_: Optional[TagQuery] = None, rel: Optional[TagQuery] = None) -> SirenLink:
        found = self.find_link(class_=class_, rel=rel)
        if found is None:
            query = _query_of(class_, rel)
            raise NotFoundError(f"No link matches {query}", query=query)
        return found

    # Actions

    def find_action(self, name: str) -> Optional[SirenAction]:
        for action in self.actions or []:
            if action.name == name:
                return action
        return None

    def get_action(self, name: str) -> SirenAction:
        found = self.find_action(name)
        if found is None:
            raise NotFoundError(f"No action named {name!r}", query={"name": name})
        return found

    # Properties

    def string_property(self, key: str) -> Optional[str]:
        value = (self.properties or {}).get(key)
        return value if isinstance(value, str) else None

    def get_string_property(self, key: str) -> str:
        value = self.string_property(key)
        if value is None:
            raise MissingFieldError(f"Missing string property {key!r} on entity {self.class_}")
        return value


SirenEntity.model_rebuild()


def parse_siren(data: Any, *, url: str = "") -> SirenEntity:
    """Validate a decoded JSON body as a Siren entity."""
    try:
        return SirenEntity.model_validate(data)
    except ValidationError as e:
        raise SchemaViolationError(f"Malformed Siren entity from {url or 'response'}: {e}") from e
