"""Multi-region AWS KMS key orchestration: provisioning, policy, grants."""
