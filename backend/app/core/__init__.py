"""
Core infrastructure for the ReelStage backend application.

- auth: Bearer-token extraction and local JWT validation
- database: MongoDB async client with Motor driver and connection pooling
"""
