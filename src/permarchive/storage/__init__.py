# src/permarchive/storage/__init__.py
"""
Storage network collaborators.

The orchestrator only sees the Uploader protocol. GatewayUploader talks HTTP
to an upload gateway; testing.memory_uploader is the in-memory stand-in.
"""
