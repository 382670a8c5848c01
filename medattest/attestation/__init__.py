"""
Attestation module.

This module provides the physician attestation protocol:
- Verification strategies (companion app, email code, in-person approval)
- The session state machine producing the attestation record
- The gate that keeps protected actions closed until attestation succeeds
"""
