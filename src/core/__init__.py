"""Core domain package for reactbridge.

Core contains identity normalization, temporal extraction, rule matching,
template rendering and idempotent execution without any gateway or
storage-specific code, keeping the business logic portable.
"""
