"""
Module: handlers
Description: Package initialization for API endpoint handlers.

This package contains FastAPI route handlers:
- events: Event ingestion endpoint
- delivery: Delivery status, listing and retry administration

Handlers get the delivery manager through dependency injection.
"""

__all__ = []
