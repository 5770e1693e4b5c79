"""
SecureBank

Banking backend with user signup and login, checking and savings accounts,
account funding and transaction history. Monetary math uses Decimal and
SSNs are encrypted at rest.
"""

__version__ = "1.0.0"
