"""Utilities module.

This module provides the exception hierarchy and output management helpers.
"""
