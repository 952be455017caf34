"""Injection decision and RFC 6902 JSON Patch construction.

Behavior:
- A Deployment opts in with the annotation `sidecar-injector.io/inject: "true"`.
- The patch appends the `sidecar-dns` container to the pod template, points
  the pod's resolver at the sidecar on 127.0.0.1 with dnsPolicy None, and
  marks the template with `sidecar-injector.io/status: injected`.
- When a `sidecar-dns` container is already present nothing is patched, so
  re-admitting an injected Deployment is a no-op.
"""

import json
from typing import Any, Dict, List, Mapping, Optional

from .codec import DeploymentView
from .config import SidecarSpec
from .errors import PatchSerializationError
from .hashing import compute_config_hash

INJECT_ANNOTATION = "sidecar-injector.io/inject"
STATUS_ANNOTATION = "sidecar-injector.io/status"
STATUS_INJECTED = "injected"
SERVICE_ACCOUNT_HASH_KEY = "serviceAccount"

CONTAINERS_PATH = "/spec/template/spec/containers"
DNS_CONFIG_PATH = "/spec/template/spec/dnsConfig"
DNS_POLICY_PATH = "/spec/template/spec/dnsPolicy"
TEMPLATE_ANNOTATIONS_PATH = "/spec/template/metadata/annotations"

DNS_POLICY_NONE = "None"
SIDECAR_NAMESERVER = "127.0.0.1"
DNS_SEARCHES = ("default.svc.cluster.local", "svc.cluster.local", "cluster.local")


def should_inject(annotations: Optional[Mapping[str, str]]) -> bool:
    if not annotations:
        return False
    return annotations.get(INJECT_ANNOTATION) == "true"


def escape_pointer_token(token: str) -> str:
    """Escape a single JSON Pointer reference token (RFC 6901)."""
    return token.replace("~", "~0").replace("/", "~1")


def config_hash_source(view: DeploymentView) -> Optional[Mapping[str, str]]:
    # A pod template service account replaces the labels entirely.
    if view.service_account_name:
        return {SERVICE_ACCOUNT_HASH_KEY: view.service_account_name}
    return view.labels


def build_operations(
    view: DeploymentView, sidecar: SidecarSpec, upstream_address: str
) -> Optional[List[Dict[str, Any]]]:
    """Compute the ordered patch operations for an eligible Deployment.

    Returns None, not an empty list, when a container named like the sidecar
    already exists. Otherwise the operations are, in order: the container
    array, dnsConfig, dnsPolicy and the status annotation.
    """
    if sidecar.name in view.container_names:
        return None

    config_hash = compute_config_hash(config_hash_source(view))
    container = sidecar.container(upstream_address, config_hash)

    patches: List[Dict[str, Any]] = []
    if not view.container_names:
        patches.append({"op": "add", "path": CONTAINERS_PATH, "value": [container]})
    else:
        patches.append({"op": "add", "path": f"{CONTAINERS_PATH}/-", "value": container})

    patches.append(
        {
            "op": "add",
            "path": DNS_CONFIG_PATH,
            "value": {"nameservers": [SIDECAR_NAMESERVER], "searches": list(DNS_SEARCHES)},
        }
    )
    patches.append({"op": "add", "path": DNS_POLICY_PATH, "value": DNS_POLICY_NONE})

    if view.template_annotations is None:
        patches.append(
            {"op": "add", "path": TEMPLATE_ANNOTATIONS_PATH, "value": {STATUS_ANNOTATION: STATUS_INJECTED}}
        )
    else:
        patches.append(
            {
                "op": "add",
                "path": f"{TEMPLATE_ANNOTATIONS_PATH}/{escape_pointer_token(STATUS_ANNOTATION)}",
                "value": STATUS_INJECTED,
            }
        )
    return patches


def serialize_patch(patches: List[Dict[str, Any]]) -> bytes:
    try:
        return json.dumps(patches, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise PatchSerializationError(f"failed to marshal patches: {exc}") from exc


def build_patch(view: DeploymentView, sidecar: SidecarSpec, upstream_address: str) -> Optional[bytes]:
    """Serialized JSON Patch for the Deployment, or None when already injected."""
    patches = build_operations(view, sidecar, upstream_address)
    if patches is None:
        return None
    return serialize_patch(patches)
