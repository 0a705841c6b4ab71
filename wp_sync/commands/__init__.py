"""
Database commands: backup, transfer and URL rewrite
"""
