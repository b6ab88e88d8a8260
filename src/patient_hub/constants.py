"""Global constants for the patient hub.

This module defines constants used throughout the application to avoid
hardcoded strings and make the codebase more maintainable.
"""

# Profile names for conditional feature enabling
PROFILE_PATIENT = "patient"
PROFILE_BILLING = "billing"
PROFILE_ANALYTICS = "analytics"

# Event topic and consumer group shared by the write path and analytics
PATIENT_TOPIC = "patient"
ANALYTICS_CONSUMER_GROUP = "analytics-service"

# Billing account API path (relative to the billing service base URL)
BILLING_ACCOUNTS_PATH = "/api/billing/accounts"
