# src/permarchive/archive/__init__.py
"""
Archive pipeline.

One attempt per file:
  - util.content_id derives the CID from the bytes,
  - tags builds the ordered tag set,
  - orchestrator makes exactly one upload call and classifies the outcome,
  - the ledger receives exactly one record per finalized attempt.
"""
