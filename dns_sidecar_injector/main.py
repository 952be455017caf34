"""
Mutating Admission Webhook: inject a DNS relay sidecar into Deployments.

Behavior:
- Target resources: Deployment objects annotated `sidecar-injector.io/inject: "true"`.
- Mutation: a `sidecar-dns` container is appended to the pod template, the
  pod's dnsConfig is pointed at the sidecar on 127.0.0.1 with dnsPolicy None,
  and the template is annotated `sidecar-injector.io/status: injected`.
  The sidecar receives the kube-dns ClusterIP as its upstream and a
  DNS_MESH_CONFIG_HASH fingerprint of the Deployment's labels (or of its
  service account) for the dns-mesh controller.

Implementation details:
- Receives AdmissionReview (v1) requests at /mutate (HTTPS).
- Errors fail closed (allowed=false) with the reason in response.status.
- Configuration comes from the environment, see dns_sidecar_injector.config.
"""

import logging
from typing import Optional

from flask import Flask, request

from .config import InjectorConfig
from .engine import MutationEngine
from .errors import BadRequestError, ResponseEncodeError
from .resolver import KubernetesServiceResolver, load_core_v1


def create_app(engine: MutationEngine) -> Flask:
    """Build the Flask app serving /mutate and /health for the given engine."""
    app = Flask(__name__)

    @app.route("/mutate", methods=["POST"])
    def mutate():
        """Admission endpoint that returns a JSON Patch for opted-in Deployments.

        Request: AdmissionReview v1 with `request.object` containing the Deployment.
        Response: AdmissionReview v1 echoing `request.uid`, with a base64-encoded
                  `response.patch` (patchType=JSONPatch) when injection applies.
        """
        body = request.get_data(cache=False)
        try:
            payload = engine.handle(body, request.mimetype or None)
        except BadRequestError as exc:
            return str(exc), 400
        except ResponseEncodeError as exc:
            app.logger.exception("Can't encode response: %s", exc)
            return f"Could not encode response: {exc}", 500
        return app.response_class(payload, status=200, mimetype="application/json")

    @app.route("/health", methods=["GET"])  # liveness/readiness
    def health():
        """Simple liveness/readiness probe endpoint."""
        return "OK", 200

    return app


def main(config: Optional[InjectorConfig] = None) -> None:
    """Run the webhook with TLS using the cert/key provided via env or defaults."""
    config = config or InjectorConfig.from_env()
    logging.basicConfig(level=getattr(logging, config.log_level))

    resolver = KubernetesServiceResolver(load_core_v1())
    app = create_app(MutationEngine(config, resolver))
    app.logger.info(
        "Starting sidecar injector webhook on port %s (image %s:%s, dns service %s/%s)",
        config.port,
        config.sidecar_image,
        config.sidecar_image_tag,
        config.dns_service_namespace,
        config.dns_service_name,
    )
    app.run(host="0.0.0.0", port=config.port, ssl_context=(config.cert_file, config.key_file), threaded=True)


if __name__ == "__main__":
    main()
