"""
Shared utilities for the node fencer.

This package contains the external api clients and common setup:
- storageos_client / storageos_models: StorageOS v2 REST api client and models
- storageos_metrics: Prometheus latency and result metrics for api calls
- kube_client: Kubernetes reads and deletes used for fencing
- logging_config: Process logging setup
"""
