"""
realm_bridge.auth

Credential parsing and request authentication.

Responsibilities:
- Typed claims and principals (`models`).
- Claim reading and dev credential minting (`jwt`).
- FastAPI dependencies that turn a bearer header into a `Principal` (`deps`).
"""

# Package marker.
