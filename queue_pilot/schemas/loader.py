"""Load schema entries from a directory of ``*.json`` files."""

import json
from pathlib import Path
from typing import List, Set, Union

from queue_pilot.errors import SchemaDirectoryError
from queue_pilot.logging_config import get_logger
from queue_pilot.schemas.validator import SchemaEntry

logger = get_logger(__name__)


def load_schemas(directory: Union[str, Path]) -> List[SchemaEntry]:
    """Read every ``*.json`` file in ``directory`` in file-name order.

    Each file must be a JSON object with a string ``$id``, which becomes the
    schema name. Unreadable files, invalid JSON, a missing ``$id`` and
    duplicate ids are logged and skipped.

    Raises:
        SchemaDirectoryError: ``directory`` does not exist
    """
    path = Path(directory)
    if not path.is_dir():
        raise SchemaDirectoryError(str(directory))

    entries: List[SchemaEntry] = []
    seen: Set[str] = set()
    for file in sorted(path.glob("*.json")):
        try:
            parsed = json.loads(file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Skipping unreadable schema file.", file=file.name, error=str(e))
            continue

        schema_id = parsed.get("$id") if isinstance(parsed, dict) else None
        if not isinstance(schema_id, str) or not schema_id:
            logger.warning('Skipping schema file without a "$id".', file=file.name)
            continue
        if schema_id in seen:
            logger.warning("Skipping duplicate schema id.", file=file.name, schema=schema_id)
            continue

        seen.add(schema_id)
        entries.append(SchemaEntry(
            name=schema_id,
            version=str(parsed.get("version", "0.0.0")),
            title=parsed.get("title", schema_id),
            description=parsed.get("description", ""),
            schema=parsed,
        ))

    logger.info("Loaded schemas.", directory=str(path), count=len(entries))
    return entries
