"""
Data models for MediLink
"""
