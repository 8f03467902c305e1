"""Core domain package for gpubsub.

Core contains config validation, rule matching, command dispatch and the
runner lifecycle without any Pub/Sub or subprocess specific code.
"""
