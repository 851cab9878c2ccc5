"""
buildkeeper
===========

Local build automation and build-health tracking for React Native / Expo
projects: environment validation, signature conflict handling, pattern
based error resolution, environment-specific builds and health reports.
"""

__version__ = "0.1.0"
