"""Downstream delivery of terminal call outcomes."""
