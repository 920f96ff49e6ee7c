"""
URL configuration for billing app.

Mounted at /api/v1/billing/ by config/urls.py.
"""

from django.urls import path

from billing import views
from billing.webhooks.views import stripe_webhook

app_name = "billing"

urlpatterns = [
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    path("credits/", views.CreditBalanceView.as_view(), name="credit-balance"),
    path(
        "credits/transactions/",
        views.CreditTransactionListView.as_view(),
        name="credit-transactions",
    ),
    path("credits/usage/", views.UsageView.as_view(), name="credit-usage"),
    path("checkout/", views.CheckoutView.as_view(), name="checkout"),
    path("portal/", views.PortalView.as_view(), name="portal"),
]
