"""
Service modules for MediLink
"""
