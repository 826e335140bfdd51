"""
Core: settings, database and Redis connections, security, auth
dependencies, scheduling and e-mail.
"""
