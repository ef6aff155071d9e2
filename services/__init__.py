"""Service-level utilities shared by the trade sync applications."""

from .telemetry import ResiliencePolicy, Telemetry

__all__ = ["ResiliencePolicy", "Telemetry"]
