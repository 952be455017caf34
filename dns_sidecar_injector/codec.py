"""AdmissionReview (v1) wire codec.

Decodes the inbound envelope and the Deployment embedded in it, and encodes
the outbound review. The patch is carried base64-encoded in the response, the
same way the API server serializes a byte array.
"""

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import EnvelopeDecodeError, ObjectDecodeError, ResponseEncodeError

ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_KIND = "AdmissionReview"
PATCH_TYPE_JSON_PATCH = "JSONPatch"


@dataclass(frozen=True)
class AdmissionRequest:
    uid: str
    kind: Dict[str, Any]
    namespace: str
    name: str
    operation: str
    object: Any


@dataclass
class AdmissionResponse:
    uid: str = ""
    allowed: bool = False
    patch: Optional[bytes] = None
    message: Optional[str] = None

    @property
    def patch_type(self) -> Optional[str]:
        return PATCH_TYPE_JSON_PATCH if self.patch else None


@dataclass(frozen=True)
class DeploymentView:
    """Read-only projection of the Deployment under review."""

    namespace: str = ""
    name: str = ""
    annotations: Optional[Dict[str, str]] = None
    labels: Optional[Dict[str, str]] = None
    template_annotations: Optional[Dict[str, str]] = None
    service_account_name: str = ""
    container_names: List[str] = field(default_factory=list)


class AdmissionCodec:
    """Stateless AdmissionReview encoder/decoder shared by every request."""

    def decode_review(self, body: bytes) -> AdmissionRequest:
        try:
            review = json.loads(body)
        except (TypeError, ValueError) as exc:
            raise EnvelopeDecodeError(f"couldn't decode AdmissionReview: {exc}") from exc

        if not isinstance(review, dict):
            raise EnvelopeDecodeError("AdmissionReview must be a JSON object")
        kind = review.get("kind")
        if not kind:
            raise EnvelopeDecodeError("Object 'Kind' is missing in AdmissionReview")
        if kind != ADMISSION_KIND:
            raise EnvelopeDecodeError(f"unexpected kind {kind!r}, expected {ADMISSION_KIND}")

        req = review.get("request")
        if not isinstance(req, dict):
            raise EnvelopeDecodeError("AdmissionReview has no request")

        fields = {}
        for key in ("uid", "namespace", "name", "operation"):
            value = req.get(key) or ""
            if not isinstance(value, str):
                raise EnvelopeDecodeError(f"request.{key} must be a string")
            fields[key] = value

        request_kind = req.get("kind") or {}
        if not isinstance(request_kind, dict):
            raise EnvelopeDecodeError("request.kind must be an object")

        return AdmissionRequest(kind=request_kind, object=req.get("object"), **fields)

    def decode_deployment(self, raw: Any) -> DeploymentView:
        if not isinstance(raw, dict):
            raise ObjectDecodeError("request.object is not a Deployment object")

        metadata = _object_field(raw, "metadata", "metadata")
        spec = _object_field(raw, "spec", "spec")
        template = _object_field(spec, "template", "spec.template")
        template_metadata = _object_field(template, "metadata", "spec.template.metadata")
        pod_spec = _object_field(template, "spec", "spec.template.spec")

        containers = pod_spec.get("containers")
        if containers is None:
            containers = []
        if not isinstance(containers, list):
            raise ObjectDecodeError("spec.template.spec.containers must be a list")
        names = []
        for index, container in enumerate(containers):
            if not isinstance(container, dict):
                raise ObjectDecodeError(f"spec.template.spec.containers[{index}] must be an object")
            names.append(_string_field(container, "name", f"spec.template.spec.containers[{index}].name"))

        return DeploymentView(
            namespace=_string_field(metadata, "namespace", "metadata.namespace"),
            name=_string_field(metadata, "name", "metadata.name"),
            annotations=_string_map(metadata, "annotations", "metadata.annotations"),
            labels=_string_map(metadata, "labels", "metadata.labels"),
            template_annotations=_string_map(
                template_metadata, "annotations", "spec.template.metadata.annotations"
            ),
            service_account_name=_string_field(
                pod_spec, "serviceAccountName", "spec.template.spec.serviceAccountName"
            ),
            container_names=names,
        )

    def encode_review(self, response: AdmissionResponse) -> bytes:
        body: Dict[str, Any] = {"uid": response.uid, "allowed": response.allowed}
        if response.patch:
            body["patch"] = base64.b64encode(response.patch).decode("ascii")
            body["patchType"] = response.patch_type
        if response.message is not None:
            body["status"] = {"message": response.message}

        review = {"apiVersion": ADMISSION_API_VERSION, "kind": ADMISSION_KIND, "response": body}
        try:
            return json.dumps(review, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise ResponseEncodeError(f"could not encode response: {exc}") from exc


def _object_field(parent: Dict[str, Any], key: str, path: str) -> Dict[str, Any]:
    value = parent.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ObjectDecodeError(f"{path} must be an object")
    return value


def _string_field(parent: Dict[str, Any], key: str, path: str) -> str:
    value = parent.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ObjectDecodeError(f"{path} must be a string")
    return value


def _string_map(parent: Dict[str, Any], key: str, path: str) -> Optional[Dict[str, str]]:
    # None (absent or null) is distinct from an empty mapping.
    value = parent.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ObjectDecodeError(f"{path} must be an object")
    for item_key, item_value in value.items():
        if not isinstance(item_value, str):
            raise ObjectDecodeError(f"{path}[{item_key!r}] must be a string")
    return dict(value)
