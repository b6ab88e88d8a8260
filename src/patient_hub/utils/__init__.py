"""Utility helpers for the patient hub."""
