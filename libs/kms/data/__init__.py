"""Packaged CloudFormation templates."""
