"""
Authorization policy: capability matrix, object rules and the compiled
row-level-security policies derived from the same declarative table.
"""
