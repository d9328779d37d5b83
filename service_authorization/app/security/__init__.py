"""
Security event tracking for the Authorization Service.
"""
