"""
realm_bridge.api

HTTP surface (FastAPI).

Responsibilities:
- App factory, dependency wiring and routers over the bridge's services.
"""

# Package marker.
