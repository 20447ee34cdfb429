"""
Invoice Analytics Service

Organization-scoped invoicing analytics and client performance metrics.
"""

__version__ = "1.0.0"
