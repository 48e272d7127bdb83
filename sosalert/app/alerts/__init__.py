"""
alerts - Critical alert dispatch pipeline (server side).

Sub-modules:
    channels/        - Push transports (simulation, FCM HTTP v1)
    dispatcher       - trigger(): resolve → fan-out → aggregate
    resolvers        - target/responder and delivery-token lookups
    payload_builder  - immutable envelope construction
    record_store     - user record store adapters
    models           - Data structures shared across the pipeline
"""
