"""Startup configuration for the DNS sidecar injector.

Every value is read from the environment once, in ``InjectorConfig.from_env``,
and is immutable afterwards:

- SIDECAR_IMAGE (default: docker.io/emirozbir/sidecar-injector)
- SIDECAR_IMAGE_TAG (default: latest)
- UPSTREAM_DNS_PORT (default: 53)
- CONTROLLER_ADDRESS (default: the dns-mesh-controller metrics service)
- DNS_SERVICE_NAMESPACE (default: kube-system)
- DNS_SERVICE_NAME (default: kube-dns)
- PORT (default: 8443)
- CERT_FILE (default: /etc/webhook/certs/tls.crt)
- KEY_FILE (default: /etc/webhook/certs/tls.key)
- LOG_LEVEL (default: INFO)
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .errors import ConfigError

SIDECAR_NAME = "sidecar-dns"
CONFIG_HASH_ENV = "DNS_MESH_CONFIG_HASH"

DEFAULT_SIDECAR_IMAGE = "docker.io/emirozbir/sidecar-injector"
DEFAULT_SIDECAR_IMAGE_TAG = "latest"
DEFAULT_UPSTREAM_PORT = 53
DEFAULT_CONTROLLER_ADDRESS = (
    "http://dns-mesh-controller-controller-manager-metrics-service"
    ".dns-mesh-controller-system:5959"
)
DEFAULT_DNS_SERVICE_NAMESPACE = "kube-system"
DEFAULT_DNS_SERVICE_NAME = "kube-dns"
DEFAULT_PORT = 8443
DEFAULT_CERT_FILE = "/etc/webhook/certs/tls.crt"
DEFAULT_KEY_FILE = "/etc/webhook/certs/tls.key"
DEFAULT_LOG_LEVEL = "INFO"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class SidecarSpec:
    """The DNS relay container injected into matching pod templates."""

    image_name: str = DEFAULT_SIDECAR_IMAGE
    image_tag: str = DEFAULT_SIDECAR_IMAGE_TAG
    upstream_port: int = DEFAULT_UPSTREAM_PORT
    controller_address: str = DEFAULT_CONTROLLER_ADDRESS
    name: str = SIDECAR_NAME

    @property
    def image(self) -> str:
        return f"{self.image_name}:{self.image_tag}"

    def args(self, upstream_address: str) -> List[str]:
        return [
            "-upstream",
            f"{upstream_address}:{self.upstream_port}",
            "-controller",
            self.controller_address,
        ]

    def container(self, upstream_address: str, config_hash: str) -> Dict[str, Any]:
        """Render the container body as it appears in a pod spec."""
        return {
            "name": self.name,
            "image": self.image,
            "args": self.args(upstream_address),
            "env": [{"name": CONFIG_HASH_ENV, "value": config_hash}],
            "resources": {},
        }


@dataclass(frozen=True)
class InjectorConfig:
    sidecar_image: str = DEFAULT_SIDECAR_IMAGE
    sidecar_image_tag: str = DEFAULT_SIDECAR_IMAGE_TAG
    upstream_port: int = DEFAULT_UPSTREAM_PORT
    controller_address: str = DEFAULT_CONTROLLER_ADDRESS
    dns_service_namespace: str = DEFAULT_DNS_SERVICE_NAMESPACE
    dns_service_name: str = DEFAULT_DNS_SERVICE_NAME
    port: int = DEFAULT_PORT
    cert_file: str = DEFAULT_CERT_FILE
    key_file: str = DEFAULT_KEY_FILE
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        for field_name in (
            "sidecar_image",
            "sidecar_image_tag",
            "controller_address",
            "dns_service_namespace",
            "dns_service_name",
        ):
            if not getattr(self, field_name):
                raise ConfigError(f"{field_name} must not be empty")
        for field_name in ("upstream_port", "port"):
            value = getattr(self, field_name)
            if not 0 < value < 65536:
                raise ConfigError(f"{field_name} out of range: {value}")
        if self.log_level not in _LOG_LEVELS:
            raise ConfigError(f"unknown log level: {self.log_level}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "InjectorConfig":
        """Build the configuration from environment variables.

        Unset or empty variables fall back to the documented defaults.
        """
        env = os.environ if environ is None else environ

        def get(key: str, default: str) -> str:
            return env.get(key) or default

        return cls(
            sidecar_image=get("SIDECAR_IMAGE", DEFAULT_SIDECAR_IMAGE),
            sidecar_image_tag=get("SIDECAR_IMAGE_TAG", DEFAULT_SIDECAR_IMAGE_TAG),
            upstream_port=_parse_int("UPSTREAM_DNS_PORT", get("UPSTREAM_DNS_PORT", str(DEFAULT_UPSTREAM_PORT))),
            controller_address=get("CONTROLLER_ADDRESS", DEFAULT_CONTROLLER_ADDRESS),
            dns_service_namespace=get("DNS_SERVICE_NAMESPACE", DEFAULT_DNS_SERVICE_NAMESPACE),
            dns_service_name=get("DNS_SERVICE_NAME", DEFAULT_DNS_SERVICE_NAME),
            port=_parse_int("PORT", get("PORT", str(DEFAULT_PORT))),
            cert_file=get("CERT_FILE", DEFAULT_CERT_FILE),
            key_file=get("KEY_FILE", DEFAULT_KEY_FILE),
            log_level=get("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        )

    def sidecar_spec(self) -> SidecarSpec:
        return SidecarSpec(
            image_name=self.sidecar_image,
            image_tag=self.sidecar_image_tag,
            upstream_port=self.upstream_port,
            controller_address=self.controller_address,
        )


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from exc
