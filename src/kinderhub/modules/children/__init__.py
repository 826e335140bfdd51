"""
Children module.

Children belong to a parent account and may be placed in one class.
"""
