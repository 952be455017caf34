import base64
import hashlib
import json
from unittest.mock import patch

import pytest

from dns_sidecar_injector.config import InjectorConfig
from dns_sidecar_injector.engine import MutationEngine
from dns_sidecar_injector.errors import BadRequestError, PatchSerializationError

from conftest import StubResolver, encode, make_deployment, make_review

ELIGIBLE = {"sidecar-injector.io/inject": "true"}


def run(engine, review):
    return json.loads(engine.handle(encode(review), "application/json"))["response"]


def test_rejects_empty_body(engine, resolver):
    with pytest.raises(BadRequestError):
        engine.handle(b"", "application/json")
    assert resolver.calls == []


@pytest.mark.parametrize("content_type", [None, "text/plain", "application/yaml"])
def test_rejects_wrong_content_type(engine, content_type):
    with pytest.raises(BadRequestError):
        engine.handle(encode(make_review(make_deployment())), content_type)


def test_envelope_decode_failure_has_no_uid(engine, resolver):
    response = json.loads(engine.handle(b"{not json", "application/json"))["response"]

    assert response["uid"] == ""
    assert response["allowed"] is False
    assert response["status"]["message"]
    assert resolver.calls == []


def test_object_decode_failure_echoes_uid(engine):
    review = make_review({"metadata": {"annotations": "broken"}}, uid="uid-7")
    response = run(engine, review)

    assert response["uid"] == "uid-7"
    assert response["allowed"] is False
    assert "metadata.annotations" in response["status"]["message"]


@pytest.mark.parametrize("annotations", [None, {}, {"sidecar-injector.io/inject": "false"}])
def test_not_eligible_fast_path(engine, resolver, annotations):
    response = run(engine, make_review(make_deployment(annotations=annotations)))

    assert response == {"uid": "test-uid-123", "allowed": True}
    assert resolver.calls == []


def test_eligible_scenario(engine, resolver):
    response = run(engine, make_review(make_deployment(annotations=ELIGIBLE, labels={"app": "x"})))

    assert response["uid"] == "test-uid-123"
    assert response["allowed"] is True
    assert response["patchType"] == "JSONPatch"
    assert resolver.calls == [("kube-system", "kube-dns")]

    ops = json.loads(base64.b64decode(response["patch"]))
    assert [op["path"] for op in ops] == [
        "/spec/template/spec/containers",
        "/spec/template/spec/dnsConfig",
        "/spec/template/spec/dnsPolicy",
        "/spec/template/metadata/annotations",
    ]
    container = ops[0]["value"][0]
    assert container["args"][:2] == ["-upstream", "10.96.0.10:53"]
    assert container["env"][0]["value"] == hashlib.sha256(b'{"app":"x"}').hexdigest()


def test_already_injected_is_allowed_without_patch(engine, resolver):
    obj = make_deployment(annotations=ELIGIBLE, containers=[{"name": "app"}, {"name": "sidecar-dns"}])
    response = run(engine, make_review(obj))

    assert response == {"uid": "test-uid-123", "allowed": True}


def test_resolution_failure_fails_closed(config):
    resolver = StubResolver(error="service not found")
    engine = MutationEngine(config, resolver)
    response = run(engine, make_review(make_deployment(annotations=ELIGIBLE), uid="uid-9"))

    assert response["uid"] == "uid-9"
    assert response["allowed"] is False
    assert "patch" not in response
    assert response["status"]["message"] == "Failed to fetch DNS service IP: service not found"


def test_uses_configured_dns_service_and_sidecar():
    config = InjectorConfig(
        dns_service_namespace="dns",
        dns_service_name="coredns",
        sidecar_image="example.org/relay",
        sidecar_image_tag="2.1",
        upstream_port=5353,
    )
    resolver = StubResolver(address="10.0.0.53")
    engine = MutationEngine(config, resolver)
    response = run(engine, make_review(make_deployment(annotations=ELIGIBLE)))

    assert resolver.calls == [("dns", "coredns")]
    container = json.loads(base64.b64decode(response["patch"]))[0]["value"][0]
    assert container["image"] == "example.org/relay:2.1"
    assert container["args"][1] == "10.0.0.53:5353"


def test_request_kind_not_an_object_is_envelope_failure(engine, resolver):
    review = make_review(make_deployment(annotations=ELIGIBLE))
    review["request"]["kind"] = "Deployment"
    response = run(engine, review)

    assert response["uid"] == ""
    assert response["allowed"] is False
    assert response["status"]["message"] == "request.kind must be an object"
    assert resolver.calls == []


def test_patch_serialization_failure_echoes_uid(engine):
    with patch("dns_sidecar_injector.engine.build_patch", side_effect=PatchSerializationError("x")):
        response = run(engine, make_review(make_deployment(annotations=ELIGIBLE), uid="uid-11"))

    assert response["uid"] == "uid-11"
    assert response["allowed"] is False
    assert response["status"]["message"] == "x"
    assert "patch" not in response
