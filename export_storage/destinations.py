"""
Named export destinations loaded from a YAML file.

Example::

    destinations:
      nightly:
        uri: s3://backups/nightly?AWS_ACCESS_KEY_ID=...&AWS_SECRET_ACCESS_KEY=...
      scratch:
        provider: local
        local:
          path: /var/lib/exports
"""
from pathlib import Path
from typing import Any, Dict, Union

import yaml
from pydantic import ValidationError

from export_storage.conf import ExportStorageConf, Provider
from export_storage.errors import InvalidConfigError, UnsupportedProviderError
from export_storage.uri import parse_uri


def parse_destination(name: str, entry: Any) -> ExportStorageConf:
    """
    Build a configuration from one destination entry.

    Raises:
        InvalidConfigError: If the entry is malformed
        UnsupportedProviderError: If the entry names an unknown provider
        MalformedURIError: If the entry's URI cannot be decoded
    """
    if isinstance(entry, str):
        return parse_uri(entry)

    if not isinstance(entry, dict):
        raise InvalidConfigError(f"Destination '{name}' must be a mapping or URI string")

    if "uri" in entry:
        if len(entry) != 1:
            raise InvalidConfigError(f"Destination '{name}' mixes 'uri' with other fields")
        return parse_uri(entry["uri"])

    provider = entry.get("provider")
    if provider not in {p.value for p in Provider}:
        raise UnsupportedProviderError(
            f"Destination '{name}' has unknown provider: {provider!r}"
        )

    try:
        return ExportStorageConf.model_validate(entry)
    except ValidationError as e:
        raise InvalidConfigError(f"Destination '{name}' is invalid: {e}", provider=provider) from e


def load_destinations(path: Union[str, Path]) -> Dict[str, ExportStorageConf]:
    """
    Load named destinations from a YAML file.

    Args:
        path: YAML file with a top-level ``destinations`` mapping

    Returns:
        Mapping of destination name to configuration
    """
    with open(path, "r") as f:
        document = yaml.safe_load(f) or {}

    if not isinstance(document, dict):
        raise InvalidConfigError(f"{path}: expected a mapping at top level")

    entries = document.get("destinations") or {}
    if not isinstance(entries, dict):
        raise InvalidConfigError(f"{path}: 'destinations' must be a mapping")

    return {
        str(name): parse_destination(str(name), entry)
        for name, entry in entries.items()
    }
