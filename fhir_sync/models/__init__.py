"""Pydantic schemas for the fhir-sync API."""
