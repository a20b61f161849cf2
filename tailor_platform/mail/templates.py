"""Transactional email bodies. Each builder returns (subject, html)."""

from __future__ import annotations

from html import escape
from typing import Optional, Tuple


def _layout(app_name: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: #f8f9fa; padding: 24px; border-radius: 10px; margin-bottom: 24px;">
    <h1 style="color: #0d9488; margin: 0; font-size: 26px;">{escape(app_name)}</h1>
  </div>
  {body}
  <p style="color: #9ca3af; font-size: 12px; margin-top: 32px;">You received this email because you have an account with {escape(app_name)}.</p>
</body>
</html>"""


def _button(url: str, label: str) -> str:
    return (
        f'<div style="text-align: center; margin: 28px 0;"><a href="{escape(url, quote=True)}" '
        'style="background: #0d9488; color: white; padding: 14px 28px; text-decoration: none; '
        f'border-radius: 8px; font-weight: bold; display: inline-block;">{escape(label)}</a></div>'
    )


def _hello(name: Optional[str]) -> str:
    return f"Hello {escape(name)}," if name else "Hello,"


def format_amount(amount: float, currency: str = "NGN") -> str:
    if not amount:
        return "Free"
    symbol = "₦" if currency.upper() == "NGN" else f"{currency.upper()} "
    return f"{symbol}{amount:,.0f}"


def email_verification(*, app_name: str, verify_url: str, name: Optional[str] = None) -> Tuple[str, str]:
    subject = f"Verify your email for {app_name}"
    body = f"""
  <p>{_hello(name)}</p>
  <p>Thanks for signing up. Please confirm your email address to activate your account.</p>
  {_button(verify_url, "Verify Email")}
  <p style="color: #6b7280; font-size: 14px;">If the button does not work, copy this link into your browser:<br>{escape(verify_url)}</p>
"""
    return subject, _layout(app_name, body)


def password_reset(
    *, app_name: str, reset_url: str, name: Optional[str] = None, ttl_minutes: int = 60
) -> Tuple[str, str]:
    subject = f"Reset your {app_name} password"
    body = f"""
  <p>{_hello(name)}</p>
  <p>We received a request to reset your password. The link below expires in {int(ttl_minutes)} minutes.</p>
  {_button(reset_url, "Reset Password")}
  <p style="color: #6b7280; font-size: 14px;">If you did not request this, you can ignore this email.</p>
"""
    return subject, _layout(app_name, body)


def subscription_confirmation(
    *,
    app_name: str,
    app_url: str,
    plan_name: str,
    billing_period: str,
    amount: float,
    currency: str = "NGN",
    name: Optional[str] = None,
) -> Tuple[str, str]:
    subject = f"Welcome to {app_name} {plan_name} Plan!"
    period = "Monthly" if billing_period == "monthly" else "Yearly"
    body = f"""
  <p>{_hello(name)}</p>
  <p>Your subscription to the <strong>{escape(plan_name)}</strong> plan has been activated.</p>
  <table style="width: 100%; border-collapse: collapse; background: #f0fdf4; border-radius: 8px; padding: 16px;">
    <tr><td style="padding: 8px; font-weight: bold;">Plan:</td><td style="padding: 8px;">{escape(plan_name)}</td></tr>
    <tr><td style="padding: 8px; font-weight: bold;">Billing:</td><td style="padding: 8px;">{period}</td></tr>
    <tr><td style="padding: 8px; font-weight: bold;">Amount:</td><td style="padding: 8px;">{escape(format_amount(amount, currency))}</td></tr>
    <tr><td style="padding: 8px; font-weight: bold;">Status:</td><td style="padding: 8px; color: #059669;">Active</td></tr>
  </table>
  {_button(app_url.rstrip('/') + '/settings/templates', "Complete Your Setup")}
"""
    return subject, _layout(app_name, body)
