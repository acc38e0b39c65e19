"""
realm_bridge.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Request context propagation for consistent log enrichment.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The operation ledger (`realm_bridge.tracking`) is the step-level diagnostic surface; this
# package only covers log output.
