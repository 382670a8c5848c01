"""
Physician directory module.

Resolves physician license numbers (CRM) to the contact channels used for
out-of-band verification.
"""
