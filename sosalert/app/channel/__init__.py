"""
channel - Boundary between the host application and the alert core.

Sub-modules:
    control         - AlertChannel method-call surface (start / stop / trigger)
    messages        - push data decoding
    trigger_client  - HTTP client for the server-side trigger call
"""
