"""
Sync orchestration
"""
