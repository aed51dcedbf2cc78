"""Herd treatment compliance.

This package contains the domain models and services that schedule treatment
doses, merge obligations into one timeline and raise overdue alerts,
isolated from storage and presentation for easy testing and reasoning.
"""
