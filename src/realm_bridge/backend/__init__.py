"""
realm_bridge.backend

Messaging backend package.

Responsibilities:
- Capability contract (`base`).
- In-memory implementation for dev/test (`memory`).
- HTTP client implementation for a live backend (`http`).
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Business logic never branches on which implementation is active.
