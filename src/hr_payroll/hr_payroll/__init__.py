"""HR / payroll service package.

This package is organized by feature modules (employees, attendance, leave,
overtime, material requests, payroll, ...) with a thin Flask controller layer
and service/repository layers underneath.
"""
