"""
Billing module.

Subscription plans, checkout through PayFast or Stripe, and the scheduled
renewal engine.
"""
