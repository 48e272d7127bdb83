"""
channels - Push delivery backends.

Each channel exposes a transport with:
    async send_multicast(message) → List[SendOutcome]   (one per token, input order)

Transports never retry. A per-token failure is reported as an outcome;
only "cannot attempt the batch at all" raises PushTransportError.
"""
