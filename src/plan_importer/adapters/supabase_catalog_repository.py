"""Supabase implementation for the canonical food and exercise catalog."""

from dataclasses import dataclass
from uuid import UUID

from supabase import Client

from plan_importer.domain.catalog import CanonicalEntity, CatalogKind
from plan_importer.services.matching import CatalogRepository

_TABLES = {
    CatalogKind.FOOD: "food_items",
    CatalogKind.EXERCISE: "exercises",
}


@dataclass
class SupabaseCatalogRepository(CatalogRepository):
    """Supabase-backed catalog of canonical entities."""

    client: Client

    def find_by_name(self, name: str, kind: CatalogKind) -> list[CanonicalEntity]:
        """Return entities whose name or alias equals ``name`` ignoring case."""
        table = _TABLES[kind]
        name_response = (
            self.client.table(table).select("*").ilike("name", _escape(name)).execute()
        )
        entities = {
            entity.id: entity
            for entity in (_parse_entity(row, kind) for row in name_response.data or [])
        }
        alias_response = (
            self.client.table(table).select("*").contains("aliases", [name]).execute()
        )
        for row in alias_response.data or []:
            entity = _parse_entity(row, kind)
            entities.setdefault(entity.id, entity)
        return list(entities.values())

    def list_entities(self, kind: CatalogKind) -> list[CanonicalEntity]:
        """Return all entities of a kind."""
        response = self.client.table(_TABLES[kind]).select("*").execute()
        return [_parse_entity(row, kind) for row in response.data or []]

    def create_placeholder(self, name: str, kind: CatalogKind) -> CanonicalEntity:
        """Insert an unapproved entity created by an import."""
        response = (
            self.client.table(_TABLES[kind])
            .insert(
                {
                    "name": name,
                    "aliases": [],
                    "translations": {},
                    "is_approved": False,
                    "source": "import",
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError(f"Failed to create {kind.value} placeholder")
        return _parse_entity(response.data[0], kind)


def _escape(value: str) -> str:
    """Escape ILIKE wildcards so the filter is an exact case-insensitive match."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _parse_entity(row: dict[str, object], kind: CatalogKind) -> CanonicalEntity:
    translations = row.get("translations") or {}
    return CanonicalEntity(
        id=UUID(str(row["id"])),
        kind=kind,
        name=str(row["name"]),
        aliases=tuple(str(alias) for alias in row.get("aliases") or []),
        translations=(
            {str(key): str(value) for key, value in translations.items()}
            if isinstance(translations, dict)
            else {}
        ),
        is_approved=bool(row.get("is_approved", True)),
        source=row.get("source"),
    )
