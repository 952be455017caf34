"""Resolve the cluster DNS Service to the address the sidecar forwards to."""

import logging
from typing import Optional, Protocol

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from .errors import ResolutionError

logger = logging.getLogger(__name__)

CLUSTER_IP_NONE = "None"


class AddressResolver(Protocol):
    def resolve(self, namespace: str, name: str) -> str:
        ...


class KubernetesServiceResolver:
    """Resolve a Service to its ClusterIP through the Kubernetes API.

    The CoreV1Api client is only read from, so one instance is shared by
    every request thread.
    """

    def __init__(self, core_v1: client.CoreV1Api):
        self.core_v1 = core_v1

    def resolve(self, namespace: str, name: str) -> str:
        try:
            service = self.core_v1.read_namespaced_service(name=name, namespace=namespace)
        except ApiException as exc:
            raise ResolutionError(
                f"failed to get DNS service {namespace}/{name}: {exc.status} {exc.reason}"
            ) from exc
        except (HTTPError, OSError) as exc:
            raise ResolutionError(f"failed to get DNS service {namespace}/{name}: {exc}") from exc

        cluster_ip = service.spec.cluster_ip if service.spec else None
        if not cluster_ip or cluster_ip == CLUSTER_IP_NONE:
            raise ResolutionError(f"DNS service {namespace}/{name} does not have a valid ClusterIP")

        logger.debug("Resolved DNS service %s/%s to %s", namespace, name, cluster_ip)
        return cluster_ip


def load_core_v1(kubeconfig: Optional[str] = None) -> client.CoreV1Api:
    """Build a CoreV1Api from in-cluster config, falling back to kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster config")
    except ConfigException:
        config.load_kube_config(config_file=kubeconfig)
        logger.info("Loaded kubeconfig")
    return client.CoreV1Api()
