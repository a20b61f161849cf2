"""Tailor Platform - Backend.

Multi-tenant API for tailoring businesses:
- Clients, measurement templates, styles and orders (per tenant).
- Subscription billing through Paystack.
- In-app notifications and transactional email (background worker).

See README for setup and usage.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
