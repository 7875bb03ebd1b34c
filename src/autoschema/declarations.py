"""
Entity declarations for autoschema.

An EntityDeclaration records, in order, the field, index and relationship
statements of one entity type. The EntityRegistry holds every declaration
together with an explicit map from a base entity to its specializations,
filled in when a specialization is declared.

Example:
    entities = EntityRegistry()
    article = entities.entity("Article")
    article.field("title")
    article.field("body", type="text")
    article.belongs_to("author")
    article.has_and_belongs_to_many("tags")
    entities.entity("FeaturedArticle", parent="Article")
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from .exceptions import DeclarationError
from .schema.spec import AssociationKind, AssociationSpec, FieldConstraintSet


logger = logging.getLogger(__name__)


CONSTRAINT_OPTIONS = frozenset(FieldConstraintSet.attribute_names())


def underscore(name: str) -> str:
    """CamelCase to snake_case."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.replace("-", "_").lower()


def camelize(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_"))


def pluralize(word: str) -> str:
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", word):
        return word + "es"
    return word + "s"


def singularize(word: str) -> str:
    if word.endswith("ies"):
        return word[:-3] + "y"
    if re.search(r"(s|x|z|ch|sh)es$", word):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


@dataclass
class FieldStatement:
    """``field :a, :b, type: ..., index: ...``"""

    names: List[str]
    type: Any = "string"
    index: Any = None
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexStatement:
    """``index [columns], **options``"""

    columns: Union[str, List[str]]
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AssociationStatement:
    """A relationship as declared, before names are resolved."""

    name: str
    kind: AssociationKind
    target: Optional[str] = None
    foreign_key: Optional[str] = None
    polymorphic: bool = False
    join_table: Optional[str] = None
    association_foreign_key: Optional[str] = None


class EntityDeclaration:
    """Ordered schema statements of one entity type."""

    def __init__(
        self,
        name: str,
        registry: "EntityRegistry",
        table_name: Optional[str] = None,
        parent: Optional[str] = None,
        primary_key: str = "id",
        inheritance_column: str = "type",
    ):
        self.name = name
        self.registry = registry
        self.parent = parent
        self.primary_key = primary_key
        self.inheritance_column = inheritance_column
        self._table_name = table_name
        self.statements: List[Union[FieldStatement, IndexStatement]] = []
        self.associations: List[AssociationStatement] = []

    def __repr__(self) -> str:
        return f"EntityDeclaration({self.name!r}, table={self.table_name!r})"

    @property
    def root(self) -> "EntityDeclaration":
        """The base of this entity's hierarchy; it owns the table."""
        entity = self
        while entity.parent is not None:
            entity = self.registry.get(entity.parent)
        return entity

    @property
    def table_name(self) -> str:
        if self.parent is not None:
            return self.root.table_name
        return self._table_name or pluralize(underscore(self.name))

    @property
    def foreign_key_name(self) -> str:
        """Column other tables use to reference this entity."""
        return f"{underscore(self.name)}_id"

    # Statements

    def field(self, *names: str, type: Any = "string", index: Any = None, **options: Any) -> None:
        """Declare one or more columns sharing a type and options."""
        if not names:
            raise DeclarationError(f"{self.name}: field() needs at least one column name")

        unknown = set(options) - CONSTRAINT_OPTIONS - {"polymorphic"}
        if unknown:
            raise DeclarationError(
                f"{self.name}: unknown field options {sorted(unknown)}",
                {"columns": ", ".join(names)},
            )
        self.statements.append(
            FieldStatement(names=[str(n) for n in names], type=type, index=index, options=options)
        )

    column = field
    key = field

    def timestamps(self) -> None:
        self.field("created_at", "updated_at", type="datetime")

    def index(self, columns: Union[str, Sequence[str]], **options: Any) -> None:
        """Declare an index on one column or an ordered list of columns."""
        if not isinstance(columns, str):
            columns = list(columns)
        self.statements.append(IndexStatement(columns=columns, options=options))

    add_index = index

    def belongs_to(
        self,
        name: str,
        foreign_key: Optional[str] = None,
        polymorphic: bool = False,
        target: Optional[str] = None,
    ) -> None:
        self.associations.append(
            AssociationStatement(
                name=name,
                kind=AssociationKind.BELONGS_TO,
                target=target,
                foreign_key=foreign_key,
                polymorphic=polymorphic,
            )
        )

    def has_and_belongs_to_many(
        self,
        name: str,
        join_table: Optional[str] = None,
        foreign_key: Optional[str] = None,
        association_foreign_key: Optional[str] = None,
        target: Optional[str] = None,
    ) -> None:
        self.associations.append(
            AssociationStatement(
                name=name,
                kind=AssociationKind.MANY_TO_MANY,
                target=target,
                foreign_key=foreign_key,
                join_table=join_table,
                association_foreign_key=association_foreign_key,
            )
        )

    many_to_many = has_and_belongs_to_many

    def redefine(self) -> None:
        """Discard every recorded statement."""
        self.statements = []
        self.associations = []

    reset_schema = redefine

    def schema(self, block: Callable[["EntityDeclaration"], None]) -> "EntityDeclaration":
        """Redefine the entity from scratch with ``block``."""
        self.redefine()
        block(self)
        return self


class EntityRegistry:
    """Every declared entity type and its specializations."""

    def __init__(self):
        self._entities: Dict[str, EntityDeclaration] = {}
        self._specializations: Dict[str, List[str]] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._entities

    def __iter__(self):
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)

    def entity(
        self,
        name: str,
        table: Optional[str] = None,
        parent: Optional[str] = None,
        primary_key: str = "id",
        inheritance_column: str = "type",
    ) -> EntityDeclaration:
        """Declare an entity type, replacing any earlier declaration of it."""
        if parent is not None and parent not in self._entities:
            raise DeclarationError(f"{name}: parent entity '{parent}' is not declared")
        if parent is not None and table is not None:
            raise DeclarationError(f"{name}: a specialization shares its parent's table")

        previous = self._entities.get(name)
        if previous is not None and previous.parent is not None:
            self._specializations[previous.parent].remove(name)

        declaration = EntityDeclaration(
            name,
            self,
            table_name=table,
            parent=parent,
            primary_key=primary_key,
            inheritance_column=inheritance_column,
        )
        self._entities[name] = declaration
        self._specializations.setdefault(name, [])
        if parent is not None:
            self._specializations[parent].append(name)
        return declaration

    def get(self, name: str) -> EntityDeclaration:
        try:
            return self._entities[name]
        except KeyError:
            raise DeclarationError(f"Entity '{name}' is not declared") from None

    def roots(self) -> List[EntityDeclaration]:
        """Entities without a parent, in declaration order."""
        return [e for e in self._entities.values() if e.parent is None]

    def specializations_of(self, name: str) -> List[EntityDeclaration]:
        return [self._entities[child] for child in self._specializations.get(name, [])]

    def has_specializations(self, name: str) -> bool:
        return bool(self._specializations.get(name))

    def hierarchy(self, name: str) -> List[EntityDeclaration]:
        """The entity followed by all its descendants, depth-first."""
        entity = self.get(name)
        result = [entity]
        for child in self.specializations_of(name):
            result.extend(self.hierarchy(child.name))
        return result

    def table_name_for(self, entity_name: str, fallback: str) -> str:
        if entity_name in self._entities:
            return self._entities[entity_name].table_name
        return fallback

    def associations_of(self, entity: EntityDeclaration) -> List[AssociationSpec]:
        """Resolve every relationship of ``entity`` into an AssociationSpec."""
        resolved = []
        for statement in entity.associations:
            if statement.kind is AssociationKind.BELONGS_TO:
                target = statement.target or camelize(statement.name)
                resolved.append(
                    AssociationSpec(
                        name=statement.name,
                        kind=statement.kind,
                        target_entity_name=target,
                        foreign_key_name=statement.foreign_key or f"{statement.name}_id",
                        polymorphic=statement.polymorphic,
                    )
                )
            elif statement.kind is AssociationKind.MANY_TO_MANY:
                target = statement.target or camelize(singularize(statement.name))
                target_table = self.table_name_for(target, statement.name)
                join_table = statement.join_table or "_".join(
                    sorted([entity.table_name, target_table])
                )
                if target in self._entities:
                    target_key = self._entities[target].foreign_key_name
                else:
                    target_key = f"{singularize(statement.name)}_id"
                resolved.append(
                    AssociationSpec(
                        name=statement.name,
                        kind=statement.kind,
                        target_entity_name=target,
                        foreign_key_name=statement.foreign_key or entity.foreign_key_name,
                        join_table_name=join_table,
                        association_foreign_key=statement.association_foreign_key or target_key,
                    )
                )
            else:
                raise DeclarationError(
                    f"{entity.name}: unhandled association kind {statement.kind!r}"
                )
        return resolved

    def declared_tables(self) -> Set[str]:
        """Every table the current declarations imply, join tables included."""
        tables = set()
        for entity in self._entities.values():
            tables.add(entity.table_name)
            for association in self.associations_of(entity):
                if association.join_table_name:
                    tables.add(association.join_table_name)
        return tables

    @classmethod
    def from_config(cls, entities: Iterable[Any]) -> "EntityRegistry":
        """Build declarations from EntityConfig models (see autoschema.config)."""
        registry = cls()
        pending = list(entities)

        # Parents must be declared before their specializations
        while pending:
            ready = [e for e in pending if e.parent is None or e.parent in registry]
            if not ready:
                names = ", ".join(e.name for e in pending)
                raise DeclarationError(f"Unresolvable entity parents: {names}")
            for config in ready:
                registry._declare_from_config(config)
                pending.remove(config)

        logger.debug(f"Loaded {len(registry)} entity declarations from configuration")
        return registry

    def _declare_from_config(self, config: Any) -> EntityDeclaration:
        entity = self.entity(
            config.name,
            table=config.table,
            parent=config.parent,
            primary_key=config.primary_key,
            inheritance_column=config.inheritance_column,
        )
        if config.timestamps:
            entity.timestamps()
        for field_config in config.fields:
            options = field_config.model_dump(
                exclude={"name", "names", "type", "index"}, exclude_unset=True
            )
            entity.field(
                *field_config.column_names,
                type=field_config.type,
                index=field_config.index,
                **options,
            )
        for index_config in config.indexes:
            entity.index(index_config.columns, **index_config.index_options())
        for assoc in config.associations:
            if assoc.kind == AssociationKind.BELONGS_TO:
                entity.belongs_to(
                    assoc.name,
                    foreign_key=assoc.foreign_key,
                    polymorphic=assoc.polymorphic,
                    target=assoc.target,
                )
            else:
                entity.has_and_belongs_to_many(
                    assoc.name,
                    join_table=assoc.join_table,
                    foreign_key=assoc.foreign_key,
                    association_foreign_key=assoc.association_foreign_key,
                    target=assoc.target,
                )
        return entity
