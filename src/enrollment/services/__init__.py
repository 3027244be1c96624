"""Remote clients and the payment-to-enrollment pipeline.

Modules are imported directly (``from enrollment.services.stripe_service
import ...``); this package does not re-export them because the config layer
depends on ``ssm_service`` and eager imports here would be circular.
"""
