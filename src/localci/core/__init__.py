"""
Core utilities: host command execution and the error hierarchy.
"""
