"""Physical naming for project tables.

Every project table lives in the shared database under a name derived from
the owning project id and the logical table name:

    physical = "p" + project_id + "_" + sanitize(logical)

The derivation is recomputed at every access and is the only place in the
code base where project prefixes are built or parsed.
"""

import re

from table_engine.errors import ValidationError

_NON_IDENTIFIER_RE = re.compile(r"[^a-z0-9_]+")
_REPEATED_UNDERSCORE_RE = re.compile(r"_+")
_PHYSICAL_NAME_RE = re.compile(r"^p(\d+)_(.+)$")
_PHYSICAL_REFERENCE_RE = re.compile(r"\b(?:idx_)?p\d+_([a-z0-9_]+)\b")


def sanitize(name: str) -> str:
    """Lowercase, squash non-identifier runs into "_" and trim underscores."""
    lowered = name.lower()
    replaced = _NON_IDENTIFIER_RE.sub("_", lowered)
    collapsed = _REPEATED_UNDERSCORE_RE.sub("_", replaced)
    return collapsed.strip("_")


def validate_project_id(project_id: int) -> int:
    """Return ``project_id`` as a positive int or raise ValidationError."""
    if isinstance(project_id, bool):
        raise ValidationError("Invalid project id", error="invalid_project_id")
    if isinstance(project_id, str) and project_id.isdigit():
        project_id = int(project_id)
    if not isinstance(project_id, int) or project_id <= 0:
        raise ValidationError(
            "Invalid project id",
            error="invalid_project_id",
            details={"project_id": str(project_id)},
        )
    return project_id


def physical_table_name(project_id: int, basename: str) -> str:
    """Derive the backing table name for a logical table of a project."""
    project_id = validate_project_id(project_id)
    base = sanitize(basename)
    if not base:
        raise ValidationError(
            f"Table name '{basename}' has no identifier characters",
            error="invalid_table_name",
        )
    return f"p{project_id}_{base}"


def parse_physical_name(physical_name: str) -> tuple[int | None, str]:
    """Split a physical name into (project_id, basename).

    Names without a project prefix return (None, physical_name).
    """
    match = _PHYSICAL_NAME_RE.match(physical_name)
    if not match:
        return None, physical_name
    return int(match.group(1)), match.group(2)


def is_project_table(physical_name: str, project_id: int) -> bool:
    """Cheap ownership assertion. Never used as the authorization path."""
    return physical_name.startswith(f"p{project_id}_")


def physical_index_name(physical_table: str, index_name: str) -> str:
    """Index names are global in the store, so they embed the table name."""
    return f"idx_{physical_table}_{sanitize(index_name)}"


def logical_index_name(physical_table: str, physical_index: str) -> str:
    prefix = f"idx_{physical_table}_"
    if physical_index.startswith(prefix):
        return physical_index[len(prefix):]
    return physical_index


def sequence_name(physical_table: str, column: str) -> str:
    """Sequence feeding an integer primary key."""
    return f"{physical_table}_{sanitize(column)}_seq"


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def scrub_physical_names(text: str) -> str:
    """Replace prefixed physical identifiers in ``text`` with their basenames."""
    return _PHYSICAL_REFERENCE_RE.sub(lambda m: m.group(1), text)
