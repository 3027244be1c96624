"""Payment-to-enrollment reconciliation for the Evotion checkout gateway."""

__version__ = "0.1.0"
