"""
Homework module.

Assignments per class, parent submissions per child, and grading.
"""
