"""
In-process realtime layer: who is online, who is typing to whom, and the
per-connection outboxes that carry server pushes to WebSocket clients.
State lives on this process only; see RealtimeGateway for the wiring.
"""
