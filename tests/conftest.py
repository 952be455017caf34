import json

import pytest

from dns_sidecar_injector.config import InjectorConfig
from dns_sidecar_injector.engine import MutationEngine
from dns_sidecar_injector.errors import ResolutionError
from dns_sidecar_injector.main import create_app

DNS_SERVICE_IP = "10.96.0.10"


class StubResolver:
    """Records lookups and answers with a fixed address or error."""

    def __init__(self, address=DNS_SERVICE_IP, error=None):
        self.address = address
        self.error = error
        self.calls = []

    def resolve(self, namespace, name):
        self.calls.append((namespace, name))
        if self.error is not None:
            raise ResolutionError(self.error)
        return self.address


def make_deployment(
    annotations=None,
    labels=None,
    containers=None,
    template_annotations=None,
    service_account=None,
    name="web",
    namespace="default",
):
    metadata = {"name": name, "namespace": namespace}
    if annotations is not None:
        metadata["annotations"] = annotations
    if labels is not None:
        metadata["labels"] = labels

    template_metadata = {}
    if template_annotations is not None:
        template_metadata["annotations"] = template_annotations

    pod_spec = {"containers": containers if containers is not None else []}
    if service_account is not None:
        pod_spec["serviceAccountName"] = service_account

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": metadata,
        "spec": {"template": {"metadata": template_metadata, "spec": pod_spec}},
    }


def make_review(obj, uid="test-uid-123"):
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {
            "uid": uid,
            "kind": {"group": "apps", "version": "v1", "kind": "Deployment"},
            "namespace": "default",
            "name": "web",
            "operation": "CREATE",
            "object": obj,
        },
    }


def encode(review):
    return json.dumps(review).encode("utf-8")


@pytest.fixture
def config():
    return InjectorConfig()


@pytest.fixture
def resolver():
    return StubResolver()


@pytest.fixture
def engine(config, resolver):
    return MutationEngine(config, resolver)


@pytest.fixture
def client(engine):
    app = create_app(engine)
    app.testing = True
    return app.test_client()
