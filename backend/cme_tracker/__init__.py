"""CME Tracker - continuing medical education tracking backend."""
