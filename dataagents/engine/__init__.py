"""
Proposal engine: consolidation, validation, locking and block application.

Persistence is reached only through the protocols in engine.stores.
"""
