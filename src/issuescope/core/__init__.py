"""Core domain package for issuescope.

Core contains matching, scheduling, reconciliation and dispatch logic without
any GitHub, SMTP or file-format specific code, keeping the engine portable.
"""
