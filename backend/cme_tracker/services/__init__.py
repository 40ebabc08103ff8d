"""CME Tracker - Domain Services"""
