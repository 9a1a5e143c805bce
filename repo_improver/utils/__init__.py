"""Utility modules: async subprocess execution and logging setup."""
