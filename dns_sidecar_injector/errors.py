"""Exception types raised while handling an admission review."""


class InjectorError(Exception):
    """Base class for every error raised by the injector."""


class ConfigError(InjectorError):
    """Startup configuration is missing or invalid."""


class BadRequestError(InjectorError):
    """The HTTP request was rejected before the envelope was read (400)."""


class EnvelopeDecodeError(InjectorError):
    """The AdmissionReview envelope could not be decoded."""


class ObjectDecodeError(InjectorError):
    """The Deployment embedded in the review could not be decoded."""


class ResolutionError(InjectorError):
    """The DNS service address could not be resolved."""


class ConfigHashError(InjectorError):
    """The configuration fingerprint could not be computed."""


class PatchSerializationError(InjectorError):
    """The JSON Patch document could not be serialized."""


class ResponseEncodeError(InjectorError):
    """The AdmissionReview response could not be encoded (500)."""
