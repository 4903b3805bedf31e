"""
Command-line entry point for dianomeas.
"""
