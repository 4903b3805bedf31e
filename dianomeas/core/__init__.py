"""
Core modules for dianomeas.

This package contains capacity lookup, device provisioning, event
reconciliation and usage analytics.
"""
