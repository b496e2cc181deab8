"""Clinics, their assistant mappings and cases."""
