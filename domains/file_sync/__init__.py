"""
File Sync Domain

Stages files received over chat for pickup by a remote puller:
- dedup.py - Suppresses redelivered platform events
- store.py - Durable file records and the blob directory
- pipeline.py - Inbound event -> staged blob -> pending record
- sweeper.py - Expiry of stale records and orphan blob cleanup
"""

__all__ = ["dedup", "store", "pipeline", "sweeper"]
