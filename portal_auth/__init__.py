"""
Merchant Portal Auth

Session and credential lifecycle for the merchant portal: sessions,
two-factor authentication, password reset and email verification for
admin, merchant and consumer users.
"""

__version__ = "0.1.0"
__author__ = "Merchant Portal Team"
