"""Conversational turn engine."""
