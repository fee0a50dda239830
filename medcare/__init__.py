"""
MedCare Appointment Service

FastAPI service for appointment requests: slot availability, admin approval
with cascading rejection of competing requests, and the request lifecycle.
"""

__version__ = "1.0.0"
