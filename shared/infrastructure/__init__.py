"""
Infrastructure module: database sessions, execution context, Redis pool.
"""
