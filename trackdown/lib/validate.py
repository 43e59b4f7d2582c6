"""
Schema validation for trackdown.

Every persisted document (item frontmatter, index snapshot, dependency
records, project config) is checked against a JSON Schema shipped in
trackdown/schemas/. Writes are refused rather than leaving bad data on disk.
"""

import json
from pathlib import Path

import jsonschema
from jsonschema.exceptions import best_match

from trackdown.lib.errors import SchemaError

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"

# One compiled validator per schema name
_validators: dict[str, jsonschema.Draft7Validator] = {}


def get_validator(schema_name: str) -> jsonschema.Draft7Validator:
    if schema_name not in _validators:
        schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise SchemaError(schema_name, f"No schema at {schema_path}")
        schema = json.loads(schema_path.read_text())
        jsonschema.Draft7Validator.check_schema(schema)
        _validators[schema_name] = jsonschema.Draft7Validator(schema)
    return _validators[schema_name]


def _first_error(data, schema_name: str):
    """Most relevant failure as (message, dotted path), or None."""
    error = best_match(get_validator(schema_name).iter_errors(data))
    if error is None:
        return None
    return error.message, ".".join(str(p) for p in error.absolute_path) or None


def validate(data, schema_name: str) -> None:
    """
    Check a document against a named schema.

    Only the most relevant failure is reported, located by its JSON path
    (e.g. "state_metadata.transitioned_by").

    Args:
        data: Document to validate (dict or list)
        schema_name: Schema name (e.g., "epic", "index", "dependencies")

    Raises:
        SchemaError: If the document does not match
    """
    failure = _first_error(data, schema_name)
    if failure:
        raise SchemaError(schema_name, *failure)


def validate_before_write(data, schema_name: str, filepath: Path) -> None:
    """Like validate(), but names the file that would have been written."""
    failure = _first_error(data, schema_name)
    if failure:
        message, location = failure
        raise SchemaError(schema_name, f"Refusing to write {filepath}: {message}", location)
