"""
Classes module.

Classes, their teacher assignment and child enrollment with capacity checks.
"""
