"""
Voice provider package.

Do not import factory/adapters here.
"""
