"""
Core package - cross-cutting concerns.

Modules:
    config      - environment variables & settings
    logging     - structured JSON logging
    errors      - trigger error taxonomy & handlers
    middleware  - request correlation ids & access logging
    health      - health check aggregation
    database    - async SQLAlchemy engine backing the SQL record store
"""
