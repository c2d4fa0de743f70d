"""
MedBook Appointment Service

A FastAPI-based backend for booking appointments: registration and login,
booking with a per-user cap, simulated payment confirmation, cancellation
and feedback.
"""

__version__ = "1.0.0"
