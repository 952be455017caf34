"""Admission review state machine.

A request moves through ReceivedBody -> Decoded -> FastAllow | Mutating ->
Responded. Once the outer envelope has decoded, the response always carries
the request uid, whatever happens downstream. `allowed` starts out False, so
any failure branch denies the request.
"""

import logging
from typing import Optional

from .codec import AdmissionCodec, AdmissionRequest, AdmissionResponse
from .config import InjectorConfig, SidecarSpec
from .errors import (
    BadRequestError,
    ConfigHashError,
    EnvelopeDecodeError,
    ObjectDecodeError,
    PatchSerializationError,
    ResolutionError,
)
from .injection import build_patch, should_inject
from .resolver import AddressResolver

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


class MutationEngine:
    def __init__(
        self,
        config: InjectorConfig,
        resolver: AddressResolver,
        codec: Optional[AdmissionCodec] = None,
        sidecar: Optional[SidecarSpec] = None,
    ):
        self.config = config
        self.resolver = resolver
        self.codec = codec or AdmissionCodec()
        self.sidecar = sidecar or config.sidecar_spec()

    def handle(self, body: Optional[bytes], content_type: Optional[str]) -> bytes:
        """Process one raw /mutate request and return the encoded review.

        Raises BadRequestError for an empty body or a non-JSON content type,
        and ResponseEncodeError when the response cannot be serialized.
        """
        if not body:
            logger.warning("Empty body")
            raise BadRequestError("Empty body")
        if content_type != JSON_CONTENT_TYPE:
            logger.warning("Invalid content type: %s", content_type)
            raise BadRequestError("Invalid content type")

        try:
            request = self.codec.decode_review(body)
        except EnvelopeDecodeError as exc:
            logger.error("Can't decode body: %s", exc)
            response = AdmissionResponse(message=str(exc))
        else:
            response = self.mutate(request)
            response.uid = request.uid

        return self.codec.encode_review(response)

    def mutate(self, request: AdmissionRequest) -> AdmissionResponse:
        logger.info(
            "AdmissionReview for kind=%s namespace=%s name=%s uid=%s",
            request.kind.get("kind"),
            request.namespace,
            request.name,
            request.uid,
        )

        try:
            deployment = self.codec.decode_deployment(request.object)
        except ObjectDecodeError as exc:
            logger.error("Could not unmarshal raw object: %s", exc)
            return AdmissionResponse(message=str(exc))

        if not should_inject(deployment.annotations):
            logger.info("Skipping injection for deployment %s/%s", deployment.namespace, deployment.name)
            return AdmissionResponse(allowed=True)

        try:
            dns_address = self.resolver.resolve(
                self.config.dns_service_namespace, self.config.dns_service_name
            )
        except ResolutionError as exc:
            logger.error("Could not get DNS service IP: %s", exc)
            return AdmissionResponse(message=f"Failed to fetch DNS service IP: {exc}")
        logger.info(
            "Using DNS service IP %s for deployment %s/%s", dns_address, deployment.namespace, deployment.name
        )

        try:
            patch = build_patch(deployment, self.sidecar, dns_address)
        except (ConfigHashError, PatchSerializationError) as exc:
            logger.error("Could not create patch: %s", exc)
            return AdmissionResponse(message=str(exc))

        if patch is None:
            logger.info(
                "Sidecar %s already present in deployment %s/%s",
                self.sidecar.name,
                deployment.namespace,
                deployment.name,
            )
            return AdmissionResponse(allowed=True)

        logger.info("Successfully created patch for deployment %s/%s", deployment.namespace, deployment.name)
        return AdmissionResponse(allowed=True, patch=patch)
