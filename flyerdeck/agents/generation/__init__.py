"""
Slide generation package.
"""
