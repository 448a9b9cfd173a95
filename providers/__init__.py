"""Remote data providers for wallet holdings.

Currently only the XRP Ledger is supported, queried over public JSON-RPC
servers listed in ``settings.json``.
"""
