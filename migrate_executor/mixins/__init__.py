"""Shared functionality mixins for Migrate Executor"""

from .database import DatabaseMixin
from .credentials import CredentialsMixin

__all__ = ['DatabaseMixin', 'CredentialsMixin']
