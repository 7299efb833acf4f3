"""Resilient inference gateway for the academic assistant."""

from academic_gateway.gateway import InferenceGateway

__all__ = ["InferenceGateway"]
