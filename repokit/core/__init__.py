"""
Core services: configuration, logging, error taxonomy, engine setup,
persistence scopes, auditing, identity classification and locking.
"""
