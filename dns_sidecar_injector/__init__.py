"""Mutating admission webhook that injects a DNS relay sidecar into Deployments."""

__version__ = "0.1.0"
