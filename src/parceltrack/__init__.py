"""parceltrack - delivery lifecycle authority.

Tracks parcels through a role-gated lifecycle of named states, binds couriers
to deliveries and keeps an append-only audit trail of every change.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
