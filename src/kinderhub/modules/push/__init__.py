"""
Push module.

Web Push subscriptions and delivery through VAPID-authenticated pywebpush.
"""
