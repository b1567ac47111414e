"""
Warden - Account Security Service

User accounts with credential hashing, brute-force lockout, signed
access/refresh tokens and single-use secret tokens for password reset and
email verification.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
