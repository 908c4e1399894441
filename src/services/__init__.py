"""
Services Layer for the Referral Intake Service.

Referral pipeline services live in ``src.services.referrals``; object
storage in ``src.services.storage``; patient-record encryption in
``src.services.security``.
"""
