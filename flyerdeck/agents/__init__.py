"""
Generation agents package.
"""
