"""
Notifications module.

In-app notification inbox with read tracking; new notifications are also
pushed to the recipient's devices.
"""
