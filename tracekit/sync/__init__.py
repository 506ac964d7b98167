"""Upload pipeline for buffered points.

Modules:
    timers    — Named, cancellable timers on the event loop
    wire      — Point → Feature serialization
    uploader  — Upload cycle over queued buckets with retry bookkeeping
    scheduler — Heartbeat and midnight auto-upload timers
    history   — History (map) query and its error signal
"""
