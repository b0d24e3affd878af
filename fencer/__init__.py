"""
Fencer - Node Fencing Controller

Keeps workloads moving when a StorageOS node fails.
Responsibilities:
- Poll StorageOS node health into an expiring cache
- Turn health reports and cache expiry into reconcile requests
- Decide whether an offline node needs fencing
- Delete opted-in pods whose volumes are healthy, plus their VolumeAttachments
- Retry fencing with backoff until done or timed out
- Journal fencing outcomes and expose status over HTTP
"""
