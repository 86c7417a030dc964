# ==== SERVICES PACKAGE ==== #

"""
Services package for billing logic.

This package contains the fee calculator, invoice ledgers and payments,
invoice numbering, currency conversion and the billing service that ties
them to an invoice store.
"""
