"""
One-time challenge module.

This module provides the challenge lifecycle used by code-based attestation:
- Issuance of short-lived numeric codes, one live challenge per physician
- Out-of-band delivery of the code
- Validation with expiry, single-use and attempt-cap enforcement
"""
