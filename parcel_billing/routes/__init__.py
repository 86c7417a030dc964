# ==== ROUTES PACKAGE ==== #

"""
Routes package for API endpoints.

This package contains the FastAPI route modules for fee quotes and rate
tables, invoices and payments, and the currency catalogue.
"""
