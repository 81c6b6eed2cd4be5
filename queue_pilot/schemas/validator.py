"""
Schema Validator

JSON Schema draft-07 validation of message payloads against a fixed set of
named schemas, using ``jsonschema.Draft7Validator`` with format checking.

Schema documents may carry bookkeeping keys of their own (``version``,
``x-owner`` and so on). By default top-level keys outside the draft-07
vocabulary are stripped before compiling. A schema that is still not a valid
draft-07 document is quarantined: it is logged and left out, and the other
schemas load normally.

All accepted schemas share one ``referencing`` registry keyed by name, so a
schema can ``$ref`` another loaded schema by its ``$id``.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from jsonschema import Draft7Validator, FormatChecker
from jsonschema.exceptions import SchemaError
from referencing import Registry
from referencing.exceptions import Unresolvable
from referencing.jsonschema import DRAFT7

from queue_pilot.logging_config import get_logger

logger = get_logger(__name__)

DRAFT07_KEYWORDS = frozenset([
    "$id", "$schema", "$ref", "$comment",
    "title", "description", "default", "readOnly", "writeOnly", "examples",
    "type", "enum", "const",
    "properties", "required", "additionalProperties", "patternProperties",
    "propertyNames", "minProperties", "maxProperties", "dependencies",
    "items", "additionalItems", "contains", "minItems", "maxItems", "uniqueItems",
    "allOf", "anyOf", "oneOf", "not", "if", "then", "else",
    "format", "minLength", "maxLength", "pattern",
    "minimum", "maximum", "exclusiveMinimum", "exclusiveMaximum", "multipleOf",
    "contentMediaType", "contentEncoding", "definitions",
])


@dataclass
class SchemaEntry:
    name: str
    version: str
    title: str
    description: str
    schema: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationError:
    path: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationResult:
    valid: bool
    errors: List[ValidationError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": [e.to_dict() for e in self.errors]}


def strip_non_standard_keywords(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Drop top-level keys that are not draft-07 keywords."""
    return {k: v for k, v in schema.items() if k in DRAFT07_KEYWORDS}


class SchemaValidator:
    """Validates payloads against named schemas.

    ``validate`` never raises for payload problems or unknown names; every
    outcome is a ``ValidationResult``.
    """

    def __init__(self, entries: Iterable[SchemaEntry], strip_unknown_keywords: bool = True):
        self._entries: Dict[str, SchemaEntry] = {}
        self._validators: Dict[str, Draft7Validator] = {}
        self.quarantined: List[str] = []

        compiled: Dict[str, Dict[str, Any]] = {}
        for entry in entries:
            schema = entry.schema
            if strip_unknown_keywords:
                schema = strip_non_standard_keywords(schema)
            try:
                Draft7Validator.check_schema(schema)
            except SchemaError as e:
                logger.warning("Skipping invalid schema.", schema=entry.name, error=e.message)
                self.quarantined.append(entry.name)
                continue
            self._entries[entry.name] = entry
            compiled[entry.name] = schema

        self.registry = Registry().with_resources(
            (name, DRAFT7.create_resource(schema))
            for name, schema in compiled.items()
        )
        for name, schema in compiled.items():
            self._validators[name] = Draft7Validator(
                schema, registry=self.registry, format_checker=FormatChecker())

    def validate(self, schema_name: str, payload: Any) -> ValidationResult:
        validator = self._validators.get(schema_name)
        if validator is None:
            return ValidationResult(
                valid=False,
                errors=[ValidationError(path="", message=f'Schema "{schema_name}" not found')],
            )

        try:
            errors = [
                ValidationError(path=_pointer(err.absolute_path), message=err.message)
                for err in validator.iter_errors(payload)
            ]
        except Unresolvable as e:
            logger.warning("Unresolvable schema reference.", schema=schema_name, ref=e.ref)
            errors = [ValidationError(path="", message=f'Unresolvable reference "{e.ref}"')]
        return ValidationResult(valid=not errors, errors=errors)

    def get_schema_names(self) -> List[str]:
        return list(self._entries.keys())

    def get_schema(self, name: str) -> Optional[SchemaEntry]:
        return self._entries.get(name)


def _pointer(path: Iterable[Any]) -> str:
    parts = [str(p).replace("~", "~0").replace("/", "~1") for p in path]
    return "/" + "/".join(parts) if parts else "/"
