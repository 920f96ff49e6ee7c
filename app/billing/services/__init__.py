"""
Billing services.

Business logic that sits between the webhook router / REST views and the
models. Services receive BillingConfig and the provider client explicitly.
"""

from billing.services.checkout import CheckoutService
from billing.services.credit_provisioning import CreditProvisioningService
from billing.services.customer_service import BillingCustomerService
from billing.services.subscription_projector import SubscriptionProjector
from billing.services.usage import UsageService

__all__ = [
    "BillingCustomerService",
    "CheckoutService",
    "CreditProvisioningService",
    "SubscriptionProjector",
    "UsageService",
]
