"""
Utilities: typed pipeline exceptions.
"""
