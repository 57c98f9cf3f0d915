"""Logging and timezone helpers shared by the Imperative Shell."""
