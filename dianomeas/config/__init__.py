"""
Configuration loading for dianomeas.
"""
