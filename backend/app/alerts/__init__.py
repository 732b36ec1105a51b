"""
alerts — Geo-scoped incident reporting, notification fan-out and threads.

Sub-modules:
    models          — Records, derived views and domain events
    events          — In-process event bus (push + poll)
    alert_store     — Append-only report/response/reply store
    dispatcher      — Geo-scoped notification fan-out and self-filter
    read_state      — Per-recipient read bookkeeping
    conversation    — Ordered, role-labelled thread views
    alert_service   — Orchestration facade used by the API
"""
