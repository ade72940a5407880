"""
bff_core.observability

Observability package.

Responsibilities:
- Structured logging configuration and the security audit sink.
- Request context propagation for consistent log enrichment.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Metrics/tracing exporters can be added here without touching auth or gateway logic.
