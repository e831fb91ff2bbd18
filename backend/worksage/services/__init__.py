"""Services layer - business logic.

This module is organized into domain-based subpackages:
- auth/: Tokens and sessions, MFA, password policy, audit logging
- repositories/: Data access layer
"""
