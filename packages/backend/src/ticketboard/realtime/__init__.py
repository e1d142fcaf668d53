"""Real-time infrastructure: in-process fan-out over Server-Sent Events.

Learn: Events flow through two hops:
1. Route handlers → Broadcaster.publish (one call per committed mutation)
2. Broadcaster → each subscriber's bounded queue → its SSE response

Everything lives in one process. A client that misses events (dropped for
being slow, or simply disconnected) reconnects and gets a fresh snapshot.
"""
