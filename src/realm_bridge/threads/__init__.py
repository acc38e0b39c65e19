"""
realm_bridge.threads

Membership & thread state.

Responsibilities:
- Mirror records (`models`), the pure placeholder reconciliation (`reconcile`).
- The mirror store contract (`store`) and the membership service (`service`).
"""

# Package marker.
