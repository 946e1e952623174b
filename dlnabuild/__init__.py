"""
dlnabuild: fetch, verify, patch and cross-build a statically linked MiniDLNA.
"""

__version__ = "0.3.0"
