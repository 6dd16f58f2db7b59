"""Record identifier generation for string primary keys."""

import secrets
import time

from table_engine.naming import sanitize


def entity_prefix(table_name: str) -> str:
    """Three-letter prefix derived from the table name (REC when empty)."""
    letters = sanitize(table_name).replace("_", "")
    return letters[:3].upper() or "REC"


def generate_record_id(table_name: str) -> str:
    """Generate an id like ``PRO-1718000000000-9F2C11AB``."""
    millis = int(time.time() * 1000)
    return f"{entity_prefix(table_name)}-{millis}-{secrets.token_hex(4).upper()}"
