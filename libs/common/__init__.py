"""Utilities shared by the secrets and KMS packages."""
