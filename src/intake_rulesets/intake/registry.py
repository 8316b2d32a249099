"""SchemaRegistry — schema id → compiled JSON Schema validator.

The registry file lives at ``<forms_dir>/schemas/registry.json``::

    {
      "schemas": {
        "clal/15943/2025-07": {
          "canonical": true,
          "path": "forms/schemas/canonical/clal_smb_15943_2025-07.schema.json"
        },
        "clal/15943/2025-07#base": {
          "canonical": false,
          "path": "forms/schemas/clal_business_proposal_15943_2025-07.schema.json"
        }
      }
    }

Entry paths are relative to the directory that contains ``forms/``.
Non-canonical entries are base documents: they are registered as
``referencing`` resources under their ``$id`` so canonical wrappers can
``$ref`` them without file-path references.

Compiled validators are held in an injected :class:`SchemaCache`: each
schema file is parsed once per cache, keyed by schema id, and entries are
never replaced.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from intake_rulesets.errors import SchemaRegistryError

logger = logging.getLogger(__name__)

REGISTRY_FILE = Path("schemas") / "registry.json"


class SchemaCache:
    """Process-wide, populate-on-miss store of compiled validators."""

    def __init__(self) -> None:
        self._entries: dict[str, Draft202012Validator] = {}
        self._lock = threading.Lock()

    def get_or_load(
        self, schema_id: str, loader: Callable[[], Draft202012Validator]
    ) -> Draft202012Validator:
        cached = self._entries.get(schema_id)
        if cached is not None:
            return cached
        with self._lock:
            if schema_id not in self._entries:
                self._entries[schema_id] = loader()
            return self._entries[schema_id]

    def __contains__(self, schema_id: object) -> bool:
        return schema_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _read_json(path: Path) -> Any:
    if not path.exists():
        raise SchemaRegistryError(f"Schema file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as exc:
        raise SchemaRegistryError(f"Invalid JSON in {path}: {exc}") from exc


class SchemaRegistry:
    """Resolves schema ids to compiled validators.

    Args:
        forms_dir: the ``forms/`` directory holding ``schemas/registry.json``
        cache: compiled-validator store; share one across registries to
            share compiled schemas
    """

    def __init__(self, forms_dir: str | Path, cache: SchemaCache | None = None) -> None:
        self._forms_dir = Path(forms_dir)
        self._root = self._forms_dir.parent
        self._cache = cache if cache is not None else SchemaCache()
        self._entries: dict[str, dict[str, Any]] | None = None
        self._resources: Registry | None = None
        self._lock = threading.Lock()

    @property
    def cache(self) -> SchemaCache:
        return self._cache

    def entries(self) -> dict[str, dict[str, Any]]:
        """The raw ``schemas`` mapping from ``registry.json`` (read once).

        Raises:
            SchemaRegistryError: if the registry file is missing or malformed.
        """
        if self._entries is None:
            raw = _read_json(self._forms_dir / REGISTRY_FILE)
            schemas = raw.get("schemas") if isinstance(raw, dict) else None
            if not isinstance(schemas, dict):
                raise SchemaRegistryError("registry.json must contain a 'schemas' object")
            self._entries = schemas
            logger.info("Schema registry loaded: %d entries", len(schemas))
        return self._entries

    def has(self, schema_id: str) -> bool:
        return schema_id in self.entries()

    def schema_ids(self, canonical_only: bool = True) -> list[str]:
        return sorted(
            k for k, v in self.entries().items()
            if v.get("canonical", False) or not canonical_only
        )

    def _path(self, entry: dict[str, Any]) -> Path:
        return self._root / str(entry.get("path", ""))

    def _reference_resources(self) -> Registry:
        # Base documents every canonical schema may $ref by $id
        with self._lock:
            if self._resources is None:
                resources = []
                for schema_id, entry in self.entries().items():
                    if entry.get("canonical", False):
                        continue
                    contents = _read_json(self._path(entry))
                    uri = contents.get("$id") or schema_id
                    resources.append(
                        (uri, Resource.from_contents(contents, default_specification=DRAFT202012))
                    )
                self._resources = Registry().with_resources(resources)
            return self._resources

    def validator(self, schema_id: str) -> Draft202012Validator:
        """Compiled validator for *schema_id*, loaded once.

        Raises:
            KeyError: if *schema_id* is not in the registry.
            SchemaRegistryError: if the schema file cannot be loaded or is
                not a valid JSON Schema.
        """
        entry = self.entries().get(schema_id)
        if entry is None:
            raise KeyError(schema_id)

        def load() -> Draft202012Validator:
            path = self._path(entry)
            schema = _read_json(path)
            try:
                Draft202012Validator.check_schema(schema)
            except SchemaError as exc:
                raise SchemaRegistryError(f"Invalid JSON Schema {path}: {exc.message}") from exc
            logger.info("Compiled schema %s from %s", schema_id, path)
            return Draft202012Validator(
                schema,
                registry=self._reference_resources(),
                format_checker=Draft202012Validator.FORMAT_CHECKER,
            )

        return self._cache.get_or_load(schema_id, load)
