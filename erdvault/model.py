from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field, replace

from .constants import DEFAULT_RELATION_COLOR, DEFAULT_TABLE_COLOR
from .errors import ConstraintViolation, NotFound
from .sql import sanitize_identifier
from .utils import normalize_text

logger = logging.getLogger("ERDVault")

ONE_TO_ONE = "one-to-one"
ONE_TO_MANY = "one-to-many"
MANY_TO_MANY = "many-to-many"

RELATION_KINDS: tuple[str, ...] = (ONE_TO_ONE, ONE_TO_MANY, MANY_TO_MANY)

CARDINALITIES: dict[str, tuple[str, str]] = {
    ONE_TO_ONE: ("1", "1"),
    ONE_TO_MANY: ("1", "M"),
    MANY_TO_MANY: ("M", "M"),
}

_FIELD_FLAGS = (
    ("is_primary_key", "isPrimaryKey"),
    ("is_foreign_key", "isForeignKey"),
    ("is_auto_increment", "isAutoIncrement"),
    ("is_unique", "isUnique"),
    ("is_not_null", "isNotNull"),
)


def new_table_id() -> str:
    return f"table_{uuid.uuid4().hex}"


def new_relation_id() -> str:
    return f"rel_{uuid.uuid4().hex}"


def _require_kind(kind: str) -> str:
    kind = normalize_text(kind).lower()
    if kind not in CARDINALITIES:
        raise ConstraintViolation(f"unknown relation type: {kind!r} (expected one of {', '.join(RELATION_KINDS)})")
    return kind


@dataclass(frozen=True)
class Field:
    name: str
    type: str = "INT"
    is_primary_key: bool = False
    is_foreign_key: bool = False
    is_auto_increment: bool = False
    is_unique: bool = False
    is_not_null: bool = False
    default_value: object | None = None
    comment: str | None = None

    def to_dict(self) -> dict:
        out = {"name": self.name, "type": self.type}
        for attr, key in _FIELD_FLAGS:
            out[key] = bool(getattr(self, attr))
        if self.default_value is not None:
            out["defaultValue"] = self.default_value
        if self.comment is not None:
            out["comment"] = self.comment
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "Field":
        if not isinstance(data, dict):
            raise ConstraintViolation("field must be an object")
        flags = {attr: bool(data.get(key, False)) for attr, key in _FIELD_FLAGS}
        return cls(
            name=str(data.get("name") or ""),
            type=str(data.get("type") or "INT"),
            default_value=data.get("defaultValue"),
            comment=data.get("comment"),
            **flags,
        )


@dataclass
class Table:
    id: str
    name: str
    fields: list[Field] = field(default_factory=list)
    color: str = DEFAULT_TABLE_COLOR
    x: float = 0
    y: float = 0
    comment: str | None = None

    @property
    def primary_keys(self) -> list[Field]:
        return [f for f in self.fields if f.is_primary_key]

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
            "color": self.color,
            "position": {"x": self.x, "y": self.y},
        }
        if self.comment is not None:
            out["comment"] = self.comment
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "Table":
        if not isinstance(data, dict):
            raise ConstraintViolation("table must be an object")
        fields = data.get("fields")
        if fields is None:
            fields = []
        if not isinstance(fields, (list, tuple)):
            raise ConstraintViolation(f"table fields must be a list, got {type(fields).__name__}")
        position = data.get("position") or {}
        if not isinstance(position, dict):
            position = {}
        return cls(
            id=str(data.get("id") or new_table_id()),
            name=str(data.get("name") or ""),
            fields=[Field.from_dict(f) for f in fields],
            color=str(data.get("color") or DEFAULT_TABLE_COLOR),
            x=position.get("x", 0) or 0,
            y=position.get("y", 0) or 0,
            comment=data.get("comment"),
        )


@dataclass(frozen=True)
class Relation:
    id: str
    from_table: str
    to_table: str
    type: str = ONE_TO_MANY
    name: str = ""
    color: str = DEFAULT_RELATION_COLOR

    @property
    def from_cardinality(self) -> str:
        return CARDINALITIES[self.type][0]

    @property
    def to_cardinality(self) -> str:
        return CARDINALITIES[self.type][1]

    def endpoints(self) -> frozenset:
        return frozenset((self.from_table, self.to_table))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fromTable": self.from_table,
            "toTable": self.to_table,
            "type": self.type,
            "fromCardinality": self.from_cardinality,
            "toCardinality": self.to_cardinality,
            "name": self.name,
            "color": self.color,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Relation":
        if not isinstance(data, dict):
            raise ConstraintViolation("relation must be an object")
        kind = normalize_text(data.get("type") or ONE_TO_MANY).lower()
        if kind not in CARDINALITIES:
            logger.warning("relation %s has unknown type %r, reading it as %s", data.get("id"), kind, ONE_TO_MANY)
            kind = ONE_TO_MANY
        return cls(
            id=str(data.get("id") or new_relation_id()),
            from_table=str(data.get("fromTable") or ""),
            to_table=str(data.get("toTable") or ""),
            type=kind,
            name=str(data.get("name") or ""),
            color=str(data.get("color") or DEFAULT_RELATION_COLOR),
        )


def _legacy_items(items):
    """Accept a list of objects, a list of ``[id, object]`` pairs, or an id-keyed mapping."""
    if items is None:
        return []
    if isinstance(items, dict):
        return list(items.values())
    if not isinstance(items, (list, tuple)):
        raise ConstraintViolation(f"expected a list of objects, got {type(items).__name__}")
    out = []
    for item in items:
        if isinstance(item, (list, tuple)) and len(item) == 2 and isinstance(item[1], dict):
            data = dict(item[1])
            data.setdefault("id", item[0])
            out.append(data)
        else:
            out.append(item)
    return out


class Model:
    """The tables and relations of one diagram.

    Both maps are private; every mutation goes through a method that keeps
    relations pointing at existing tables, so a Model can never hold an
    orphan relation. Iteration order is insertion order and drives the order
    of exported SQL.
    """

    def __init__(self):
        self._tables: dict[str, Table] = {}
        self._relations: dict[str, Relation] = {}

    # ── read access ──

    @property
    def tables(self) -> list[Table]:
        return list(self._tables.values())

    @property
    def relations(self) -> list[Relation]:
        return list(self._relations.values())

    def has_table(self, table_id: str) -> bool:
        return table_id in self._tables

    def get_table(self, table_id: str) -> Table:
        try:
            return self._tables[table_id]
        except KeyError:
            raise NotFound(f"table not found: {table_id}") from None

    def get_relation(self, relation_id: str) -> Relation:
        try:
            return self._relations[relation_id]
        except KeyError:
            raise NotFound(f"relation not found: {relation_id}") from None

    def relations_for_table(self, table_id: str) -> list[Relation]:
        return [r for r in self._relations.values() if table_id in (r.from_table, r.to_table)]

    def can_create_relation(self, from_table: str, to_table: str) -> bool:
        if from_table == to_table:
            return False
        if from_table not in self._tables or to_table not in self._tables:
            return False
        pair = frozenset((from_table, to_table))
        return all(r.endpoints() != pair for r in self._relations.values())

    def relation_stats(self) -> dict:
        stats = {"total": len(self._relations)}
        for kind in RELATION_KINDS:
            stats[kind] = sum(1 for r in self._relations.values() if r.type == kind)
        return stats

    def stats(self) -> dict:
        return {
            "tables": len(self._tables),
            "relations": len(self._relations),
            "fields": sum(len(t.fields) for t in self._tables.values()),
        }

    # ── tables ──

    def _next_table_name(self) -> str:
        names = {t.name for t in self._tables.values()}
        n = len(self._tables) + 1
        while f"Table{n}" in names:
            n += 1
        return f"Table{n}"

    def add_table(self, table: Table) -> Table:
        if table.id in self._tables:
            raise ConstraintViolation(f"table id already exists: {table.id}")
        self._check_field_names(table.fields)
        self._tables[table.id] = table
        return table

    def create_table(self, name=None, x=0, y=0, color=DEFAULT_TABLE_COLOR, fields=None, comment=None) -> Table:
        if fields is None:
            fields = [Field("id", "INT", is_primary_key=True, is_auto_increment=True, is_not_null=True)]
        table = Table(
            id=new_table_id(),
            name=normalize_text(name) or self._next_table_name(),
            fields=list(fields),
            color=color or DEFAULT_TABLE_COLOR,
            x=x,
            y=y,
            comment=comment,
        )
        return self.add_table(table)

    def remove_table(self, table_id: str) -> list[str]:
        """Delete a table and every relation that references it; returns the removed relation ids."""
        self.get_table(table_id)
        removed = [r.id for r in self.relations_for_table(table_id)]
        for relation_id in removed:
            del self._relations[relation_id]
        del self._tables[table_id]
        return removed

    def duplicate_table(self, table_id: str) -> Table:
        source = self.get_table(table_id)
        return self.add_table(
            Table(
                id=new_table_id(),
                name=f"{source.name}_copy",
                fields=list(source.fields),
                color=source.color,
                x=source.x + 20,
                y=source.y + 20,
                comment=source.comment,
            )
        )

    def rename_table(self, table_id: str, name: str) -> Table:
        name = normalize_text(name)
        if not name:
            raise ConstraintViolation("table name cannot be empty")
        table = self.get_table(table_id)
        table.name = name
        return table

    def move_table(self, table_id: str, x, y) -> Table:
        table = self.get_table(table_id)
        table.x = x
        table.y = y
        return table

    def set_table_color(self, table_id: str, color: str) -> Table:
        table = self.get_table(table_id)
        table.color = color or DEFAULT_TABLE_COLOR
        return table

    def set_table_comment(self, table_id: str, comment) -> Table:
        table = self.get_table(table_id)
        table.comment = comment
        return table

    # ── fields ──

    @staticmethod
    def _check_field_names(fields, skip_index=None):
        seen = {}
        for index, f in enumerate(fields):
            if index == skip_index:
                continue
            if not normalize_text(f.name):
                raise ConstraintViolation("field name cannot be empty")
            key = sanitize_identifier(f.name)
            if key in seen:
                raise ConstraintViolation(f"field name {f.name!r} collides with {seen[key]!r} as {key!r}")
            seen[key] = f.name
        return seen

    def add_field(self, table_id: str, new_field: Field, index=None) -> Field:
        table = self.get_table(table_id)
        fields = list(table.fields)
        if index is None:
            fields.append(new_field)
        else:
            fields.insert(index, new_field)
        self._check_field_names(fields)
        table.fields = fields
        return new_field

    def update_field(self, table_id: str, index: int, **changes) -> Field:
        table = self.get_table(table_id)
        if not 0 <= index < len(table.fields):
            raise ConstraintViolation(f"field index out of range: {index}")
        updated = replace(table.fields[index], **changes)
        fields = list(table.fields)
        fields[index] = updated
        self._check_field_names(fields)
        table.fields = fields
        return updated

    def remove_field(self, table_id: str, index: int) -> Field:
        table = self.get_table(table_id)
        if not 0 <= index < len(table.fields):
            raise ConstraintViolation(f"field index out of range: {index}")
        fields = list(table.fields)
        removed = fields.pop(index)
        table.fields = fields
        return removed

    # ── relations ──

    def add_relation(self, relation: Relation) -> Relation:
        if relation.id in self._relations:
            raise ConstraintViolation(f"relation id already exists: {relation.id}")
        _require_kind(relation.type)
        for endpoint in (relation.from_table, relation.to_table):
            if endpoint not in self._tables:
                raise ConstraintViolation(f"relation {relation.id} references missing table {endpoint}")
        if relation.from_table == relation.to_table:
            raise ConstraintViolation(f"relation {relation.id} joins table {relation.from_table} to itself")
        pair = relation.endpoints()
        for existing in self._relations.values():
            if existing.endpoints() == pair:
                raise ConstraintViolation(
                    f"tables {relation.from_table} and {relation.to_table} are already related by {existing.id}"
                )
        self._relations[relation.id] = relation
        return relation

    def create_relation(self, from_table: str, to_table: str, type=ONE_TO_MANY, name=None, color=DEFAULT_RELATION_COLOR) -> Relation:
        return self.add_relation(
            Relation(
                id=new_relation_id(),
                from_table=from_table,
                to_table=to_table,
                type=_require_kind(type),
                name=normalize_text(name) or f"Relation {len(self._relations) + 1}",
                color=color or DEFAULT_RELATION_COLOR,
            )
        )

    def update_relation(self, relation_id: str, type=None, name=None, color=None) -> Relation:
        relation = self.get_relation(relation_id)
        changes = {}
        if type is not None:
            changes["type"] = _require_kind(type)
        if name is not None and normalize_text(name):
            changes["name"] = normalize_text(name)
        if color is not None:
            changes["color"] = color or DEFAULT_RELATION_COLOR
        relation = replace(relation, **changes)
        self._relations[relation_id] = relation
        return relation

    def set_relation_type(self, relation_id: str, type: str) -> Relation:
        return self.update_relation(relation_id, type=type)

    def remove_relation(self, relation_id: str) -> Relation:
        relation = self.get_relation(relation_id)
        del self._relations[relation_id]
        return relation

    # ── serialization ──

    def to_dict(self) -> dict:
        return {
            "tables": [t.to_dict() for t in self._tables.values()],
            "relations": [r.to_dict() for r in self._relations.values()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Model":
        """Build a Model from its JSON shape.

        Reading is lenient about stored content so a diagram is never lost:
        duplicate table ids keep the first table, field-name collisions are
        kept as they are, and relations that would break the referential
        invariant (missing endpoint, self relation, repeated table pair) are
        dropped with a warning.
        """
        if not isinstance(data, dict):
            raise ConstraintViolation("model payload must be an object")
        model = cls()
        for raw in _legacy_items(data.get("tables")):
            table = Table.from_dict(raw)
            if table.id in model._tables:
                logger.warning("duplicate table id %s dropped while reading model", table.id)
                continue
            model._tables[table.id] = table
        for raw in _legacy_items(data.get("relations")):
            relation = Relation.from_dict(raw)
            try:
                model.add_relation(relation)
            except ConstraintViolation as exc:
                logger.warning("relation %s purged while reading model: %s", relation.id, exc)
        return model

    def copy(self) -> "Model":
        other = Model()
        other._tables = {k: copy.deepcopy(v) for k, v in self._tables.items()}
        other._relations = dict(self._relations)
        return other

    def __eq__(self, other):
        if not isinstance(other, Model):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"<Model tables={len(self._tables)} relations={len(self._relations)}>"
