"""
PBX Call Router

Webhook execution plane for multi-tenant inbound call routing:
- Idempotent webhook handling (Redis)
- Distributed per-call locking
- Call lifecycle state machine
- Extension, ring group and business hours routing
- CXML response rendering
- Call lifecycle events (Redis Streams + Pub/Sub)
"""

__version__ = "1.0.0"
