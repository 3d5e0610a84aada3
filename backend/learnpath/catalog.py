"""Content catalog accessors feeding the constraint evaluator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Protocol

from sqlalchemy.orm import Session

from .models import ContentItem

if TYPE_CHECKING:
    from .repositories.learning_paths import LearningPathRepository


class CatalogAccessor(Protocol):
    """Anything that can list the lesson inventory in catalog order."""

    def fetch_available_content(self) -> List[ContentItem]:  # pragma: no cover - protocol definition
        ...


class InMemoryCatalog:
    """Catalog backed by a fixed list; insertion order is catalog order."""

    def __init__(self, items: Iterable[ContentItem]) -> None:
        self._items = list(items)

    def fetch_available_content(self) -> List[ContentItem]:
        return [item for item in self._items if item.published]


class DatabaseCatalog:
    """Catalog that reads published content rows through the repository."""

    def __init__(self, session: Session, repository: "LearningPathRepository") -> None:
        self._session = session
        self._repository = repository

    def fetch_available_content(self) -> List[ContentItem]:
        return self._repository.list_content(self._session, published_only=True)


__all__ = ["CatalogAccessor", "DatabaseCatalog", "InMemoryCatalog"]
