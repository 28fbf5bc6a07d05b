"""
Core - Domain model, ports and shared services.
"""
