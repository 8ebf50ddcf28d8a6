"""
API Routes
"""
from mailboard.api.routes import accounts, audit, emails, insights, stats

__all__ = ["accounts", "audit", "emails", "insights", "stats"]
