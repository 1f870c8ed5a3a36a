"""CRM client with remote-first reads/writes and a local fallback store.

Provides the reconciliation layer for Leads, Opportunities and Accounts,
the bounded activity log, and the local key-value store backends.
"""
