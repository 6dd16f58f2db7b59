"""Operator CLI for the table engine."""
