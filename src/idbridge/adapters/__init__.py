"""Adapters: protocol handlers, directory clients and persistence."""
