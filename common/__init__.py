"""
Shared plumbing for the lead marketplace services.

Settings, logging, the error taxonomy, session tokens and the storage
backends used by the connections, ledger and payouts packages.
"""
