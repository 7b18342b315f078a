"""Session domain services: storage, the mutation protocol and results.

This package contains the room state machine and its persistence seam.
HTTP routes and socket handlers import from here, keeping transport
concerns separated from the read-modify-write rules themselves.
"""
