"""TraceKit — motion-aware location capture with bucketed, retrying upload.

Subpackages:
    tracking/ — Duty-cycle controller, accuracy gate, ingestion lane
    storage/  — Time-window buckets and their repositories
    sync/     — Upload cycle, heartbeat and midnight scheduling, history query
    services/ — Trace server HTTP client
    routers/  — Local control API

Core modules:
    config  — Environment settings
    errors  — Error taxonomy
    status  — Observable status snapshot and change notifications
    service — Composition root wiring every component together
"""

__version__ = "0.1.0"
