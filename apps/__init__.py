"""
Apps package - command-line entry points.

- strongbox_cli: the `strongbox` command (secrets + KMS key management)
"""
