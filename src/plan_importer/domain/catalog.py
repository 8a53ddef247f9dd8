"""Domain models for the canonical catalog."""

from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID


class CatalogKind(StrEnum):
    """Kinds of catalog entities referenced by imported plans."""

    FOOD = "food"
    EXERCISE = "exercise"


@dataclass(frozen=True)
class CanonicalEntity:
    """A catalog item that plan entries point at by id."""

    id: UUID
    kind: CatalogKind
    name: str
    aliases: tuple[str, ...] = ()
    translations: dict[str, str] = field(default_factory=dict)
    is_approved: bool = True
    source: str | None = None

    def names(self) -> list[str]:
        """Return the canonical name followed by aliases and translations."""
        names = [self.name, *self.aliases, *self.translations.values()]
        return [name for name in names if name]
