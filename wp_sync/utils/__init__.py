"""
Utilities: command transport, audit log and file helpers
"""
