"""
Provider webhook intake and event routing.

Modules:
    events: EventKind and EventEnvelope
    handlers: Handler registry, EventRouter and the event handlers
    intake: WebhookIntake (authenticate, record, process exactly once)
    views: HTTP endpoint
"""
