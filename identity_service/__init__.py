"""
Identity Service - Face Identification for Attendance

Matches captured face samples against enrolled employees, with a quality
gate for capture and an enrollment flow for registering new faces.
"""

__version__ = "1.0.0"
__author__ = "Identity Service Team"
