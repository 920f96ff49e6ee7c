"""
Billing application.

Projects payment-provider events into local billing state:

- Webhook intake: signature verification, exactly-once processing
- Event router: dispatches typed events to handlers
- Subscription projector: derives subscription status and plan tier
- Credit ledger: append-only usage credit balance per customer

Related apps:
    - core: Base model, service result and exception hierarchy
"""
