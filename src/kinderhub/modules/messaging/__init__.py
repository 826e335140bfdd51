"""
Messaging module.

Direct messages between parents, teachers and admins with delivery and
read tracking, reactions, presence, typing indicators and search.
"""
