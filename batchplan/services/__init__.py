"""Lifecycle and sweep operations over batch sessions."""
