"""
Infrastructure layer for vodcast.

Settings, logging configuration and the exception hierarchy.
"""
