"""
realm_bridge.tracking

Operation ledger package.
"""

# Package marker.
