"""
realm_bridge.realms

Trust-domain registry package.
"""

# Package marker.
