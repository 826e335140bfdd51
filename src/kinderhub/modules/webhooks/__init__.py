"""
Webhooks module - Payment notifications from PayFast and Stripe.
"""
