"""Payment webhook inbound path.

Each webhook is signature-verified, routed by event kind, and (for successful
charges) fulfilled idempotently before a receipt is sent.
"""
