"""
Physician attestation service.

Attaches an auditable attestation of a licensed physician's identity to a
medical-authorization request before the request is considered valid.
"""
__version__ = "1.0.0"
