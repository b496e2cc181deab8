"""
Call records: lifecycle rules, attention classification, state updates.

Keep this package __init__ lightweight; import submodules directly.
"""
