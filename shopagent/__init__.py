"""Conversational shopping assistant with guarded auto-checkout."""
from .session import Option, Session
from .shopping_agent import ShoppingAgent, TurnResult

__all__ = ["Option", "Session", "ShoppingAgent", "TurnResult"]
