"""
Test suite for the MedCare Appointment Service.

Contains service-level and API tests for the appointment request engine.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
