"""
Email Service using Resend

Transactional email for subscription billing and password resets. When RESEND_API_KEY is not
set the email is logged instead of sent.
"""

import asyncio
import logging
from decimal import Decimal
from html import escape

import resend

from kinderhub.core.config import settings

logger = logging.getLogger(__name__)

resend.api_key = settings.resend_api_key


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> bool:
    """
    Send an email using Resend.

    Returns:
        True if the email was sent (or logged in place of sending)
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return True

    try:
        params: resend.Emails.SendParams = {
            "from": settings.email_from,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }

        # Resend's client is synchronous
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


def _layout(title: str, body: str, action_url: str | None = None, action_label: str = "") -> str:
    button = (
        f'<a href="{escape(action_url)}" class="button">{escape(action_label)}</a>'
        if action_url
        else ""
    )
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
            .header {{ color: #1a365d; margin-bottom: 24px; }}
            .button {{ display: inline-block; background-color: #1a365d; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }}
            .footer {{ margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }}
            table {{ border-collapse: collapse; }}
            td, th {{ padding: 4px 12px; text-align: left; }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1 class="header">{escape(title)}</h1>
            {body}
            {button}
            <div class="footer">
                <p>KinderHub - Preschool Management</p>
            </div>
        </div>
    </body>
    </html>
    """


def _money(amount: Decimal | float, currency: str) -> str:
    return f"{currency} {Decimal(str(amount)):.2f}"


async def send_renewal_success(
    to_email: str,
    name: str,
    plan_name: str,
    amount: Decimal,
    currency: str,
    next_billing_date: str,
) -> bool:
    body = f"""
        <p>Hello {escape(name)},</p>
        <p>Your <strong>{escape(plan_name)}</strong> subscription has been renewed.</p>
        <p>Amount charged: <strong>{_money(amount, currency)}</strong><br>
        Next billing date: <strong>{escape(next_billing_date)}</strong></p>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Your {plan_name} subscription has been renewed",
        html_content=_layout("Subscription Renewed", body),
    )


async def send_renewal_payment_link(
    to_email: str,
    name: str,
    plan_name: str,
    amount: Decimal,
    currency: str,
    payment_url: str,
) -> bool:
    body = f"""
        <p>Hello {escape(name)},</p>
        <p>Your <strong>{escape(plan_name)}</strong> subscription is due for renewal.</p>
        <p>Amount due: <strong>{_money(amount, currency)}</strong></p>
        <p>Please complete the payment to keep your subscription active.</p>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Renew your {plan_name} subscription",
        html_content=_layout("Renewal Payment Required", body, payment_url, "Pay Now"),
    )


async def send_renewal_failed(
    to_email: str,
    name: str,
    plan_name: str,
    reason: str,
) -> bool:
    body = f"""
        <p>Hello {escape(name)},</p>
        <p>We could not renew your <strong>{escape(plan_name)}</strong> subscription.</p>
        <p>Reason: {escape(reason)}</p>
        <p>We will try again. Please check your payment details.</p>
    """
    return await send_email(
        to_email=to_email,
        subject="Subscription renewal failed",
        html_content=_layout(
            "Renewal Failed", body, f"{settings.frontend_url}/subscription", "Update Payment"
        ),
    )


async def send_subscription_suspended(
    to_email: str,
    name: str,
    plan_name: str,
    failed_attempts: int,
) -> bool:
    body = f"""
        <p>Hello {escape(name)},</p>
        <p>Your <strong>{escape(plan_name)}</strong> subscription has been suspended after
        {failed_attempts} failed payment attempts.</p>
        <p>Update your payment details and subscribe again to restore access.</p>
    """
    return await send_email(
        to_email=to_email,
        subject="Your subscription has been suspended",
        html_content=_layout(
            "Subscription Suspended", body, f"{settings.frontend_url}/subscription", "Resubscribe"
        ),
    )


async def send_subscription_expired(
    to_email: str,
    name: str,
    plan_name: str,
) -> bool:
    body = f"""
        <p>Hello {escape(name)},</p>
        <p>Your <strong>{escape(plan_name)}</strong> subscription has expired.
        Premium features are no longer available on your account.</p>
    """
    return await send_email(
        to_email=to_email,
        subject="Your subscription has expired",
        html_content=_layout(
            "Subscription Expired", body, f"{settings.frontend_url}/subscription", "Renew"
        ),
    )


async def send_monthly_billing_report(
    to_email: str,
    period_label: str,
    revenue_rows: list[dict],
    status_counts: dict[str, int],
) -> bool:
    revenue_html = "".join(
        f"<tr><td>{escape(row['gateway'])}</td><td>{row['transactions']}</td>"
        f"<td>{_money(row['total'], row['currency'])}</td></tr>"
        for row in revenue_rows
    ) or "<tr><td colspan='3'>No completed payments</td></tr>"
    status_html = "".join(
        f"<tr><td>{escape(status)}</td><td>{count}</td></tr>"
        for status, count in sorted(status_counts.items())
    )
    body = f"""
        <p>Billing summary for <strong>{escape(period_label)}</strong>.</p>
        <h3>Revenue</h3>
        <table><tr><th>Gateway</th><th>Transactions</th><th>Total</th></tr>{revenue_html}</table>
        <h3>Subscriptions</h3>
        <table><tr><th>Status</th><th>Count</th></tr>{status_html}</table>
    """
    return await send_email(
        to_email=to_email,
        subject=f"KinderHub billing report - {period_label}",
        html_content=_layout("Monthly Billing Report", body),
    )


async def send_password_reset(
    to_email: str,
    name: str,
    reset_url: str,
    expires_minutes: int,
) -> bool:
    body = f"""
        <p>Hello {escape(name)},</p>
        <p>We received a request to reset your KinderHub password.</p>
        <p>The link below is valid for {expires_minutes} minutes and can be used once.
        If you did not ask for this, you can ignore this email.</p>
    """
    return await send_email(
        to_email=to_email,
        subject="Reset your KinderHub password",
        html_content=_layout("Password Reset", body, reset_url, "Reset Password"),
    )
