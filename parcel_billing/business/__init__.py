# ==== BUSINESS LOGIC PACKAGE ==== #

"""
Business logic package for domain errors and billing policies.

This package contains the billing error hierarchy and the YAML policies
for default shipping rates and the currency catalogue.
"""
