"""
Django admin configuration for the credit ledger.

Credit transactions are immutable: the admin is read-only. Corrections
are made by recording new transactions through CreditLedger.
"""

from django.contrib import admin

from .models import CreditTransaction


@admin.register(CreditTransaction)
class CreditTransactionAdmin(admin.ModelAdmin):
    """
    Admin configuration for CreditTransaction.

    Transactions cannot be added, edited or deleted through the admin.
    """

    list_display = [
        "id",
        "created_at",
        "customer",
        "kind",
        "amount_display",
        "balance_after",
        "external_ref",
    ]
    list_filter = ["kind", "created_at"]
    search_fields = [
        "id",
        "external_ref",
        "description",
        "customer__stripe_customer_id",
        "customer__email",
    ]
    readonly_fields = [
        "id",
        "created_at",
        "customer",
        "amount",
        "balance_after",
        "kind",
        "description",
        "external_ref",
        "sequence",
    ]
    list_select_related = ["customer"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def amount_display(self, obj: CreditTransaction) -> str:
        """Display the amount with an explicit sign."""
        return f"{obj.amount:+d}"

    amount_display.short_description = "Amount"

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        """Transactions are only created through CreditLedger."""
        return False
