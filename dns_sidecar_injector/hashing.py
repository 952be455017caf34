"""Configuration fingerprint passed to the sidecar as DNS_MESH_CONFIG_HASH."""

import hashlib
import json
from typing import Mapping, Optional

from .errors import ConfigHashError


def compute_config_hash(selector: Optional[Mapping[str, str]]) -> str:
    """Return the sha256 hex digest of a label-like mapping.

    Keys are sorted and the mapping is serialized as compact JSON, so equal
    mappings hash identically regardless of insertion order. An empty mapping
    yields "" rather than the digest of "{}".
    """
    if not selector:
        return ""

    ordered = {key: selector[key] for key in sorted(selector)}
    try:
        data = json.dumps(ordered, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise ConfigHashError(f"failed to calculate hash: {exc}") from exc

    return hashlib.sha256(data).hexdigest()
