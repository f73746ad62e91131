"""Model → SQL DDL.

Every function here is pure: the same Model always yields byte-identical
text. Tables are emitted first in Model order, then one foreign-key
constraint per relation in Model order.
"""

import logging
import re

from .utils import normalize_text

logger = logging.getLogger("ERDVault")

_unsafe_re = re.compile(r"[^A-Za-z0-9_]")

INDENT = "    "


def sanitize_identifier(name):
    return _unsafe_re.sub("_", str(name or "")).lower()


def field_modifiers(field):
    """Column modifiers in their fixed emission order."""
    modifiers = []
    if field.is_not_null:
        modifiers.append("NOT NULL")
    if field.default_value is not None:
        # Inserted as-is; quoting inside the value is the author's concern.
        modifiers.append(f"DEFAULT '{field.default_value}'")
    if field.is_unique:
        modifiers.append("UNIQUE")
    if field.is_auto_increment:
        modifiers.append("AUTO_INCREMENT")
    return modifiers


def render_field(field):
    parts = [sanitize_identifier(field.name), field.type]
    parts.extend(field_modifiers(field))
    return " ".join(parts)


def render_create_table(table):
    lines = [INDENT + render_field(f) for f in table.fields]
    pk = [sanitize_identifier(f.name) for f in table.fields if f.is_primary_key]
    if pk:
        lines.append(f"{INDENT}PRIMARY KEY ({', '.join(pk)})")
    body = ",\n".join(lines)
    # An empty field list still yields a statement: "CREATE TABLE t (\n);"
    if body:
        body += "\n"
    return f"-- Table: {normalize_text(table.name)}\nCREATE TABLE {sanitize_identifier(table.name)} (\n{body});"


def render_foreign_key(relation, from_table, to_table):
    return (
        f"-- Relation: {normalize_text(relation.name)}\n"
        f"ALTER TABLE {sanitize_identifier(from_table.name)} "
        f"ADD CONSTRAINT fk_{sanitize_identifier(relation.id)} "
        f"FOREIGN KEY (id) "
        f"REFERENCES {sanitize_identifier(to_table.name)}(id);"
    )


def find_name_collisions(model):
    """Return sanitized names claimed by more than one source name.

    ``{"tables": {sanitized: [names...]}, "fields": {table_id: {sanitized: [names...]}}}``
    """
    tables = {}
    for table in model.tables:
        tables.setdefault(sanitize_identifier(table.name), []).append(table.name)
    fields = {}
    for table in model.tables:
        seen = {}
        for f in table.fields:
            seen.setdefault(sanitize_identifier(f.name), []).append(f.name)
        clashes = {k: v for k, v in seen.items() if len(v) > 1}
        if clashes:
            fields[table.id] = clashes
    return {
        "tables": {k: v for k, v in tables.items() if len(v) > 1},
        "fields": fields,
    }


def generate_sql(model):
    collisions = find_name_collisions(model)
    if collisions["tables"] or collisions["fields"]:
        logger.warning("sanitized name collisions in generated SQL: %s", collisions)

    statements = [render_create_table(t) for t in model.tables]
    for relation in model.relations:
        if not (model.has_table(relation.from_table) and model.has_table(relation.to_table)):
            logger.debug("skip dangling relation %s", relation.id)
            continue
        statements.append(
            render_foreign_key(
                relation,
                model.get_table(relation.from_table),
                model.get_table(relation.to_table),
            )
        )
    if not statements:
        return ""
    return "\n\n".join(statements) + "\n"
