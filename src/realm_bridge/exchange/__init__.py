"""
realm_bridge.exchange

Token exchange package.

Responsibilities:
- Delegated exchange clients (`delegation`).
- The caching, coalescing exchange engine (`engine`).
"""

# Package marker.
