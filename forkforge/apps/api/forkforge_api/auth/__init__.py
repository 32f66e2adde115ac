"""Credential issuance, verification and bearer authentication."""
