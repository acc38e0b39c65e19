"""
realm_bridge.identity

Backend identity cache package.
"""

# Package marker.
