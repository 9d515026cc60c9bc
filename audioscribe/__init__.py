"""
Audioscribe - pay-as-you-go transcription job tracking and credit billing.
"""

__version__ = "1.0.0"
