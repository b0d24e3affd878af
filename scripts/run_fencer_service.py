"""
Fencer Service Launcher

Starts the StorageOS node fencing controller and its status API.

The fencer:
- Polls StorageOS node health
- Deletes opted-in pods (label storageos.com/fenced=true) from offline nodes
  once their volumes have failed over, and removes their VolumeAttachments
- Serves fencer status and the fencing journal over HTTP

Usage:
    python scripts/run_fencer_service.py --host 0.0.0.0 --port 8080

Environment Variables:
    FENCER_API_PORT: Status API port (default: 8080)
    FENCER_BIND_HOST: Bind address (default: 0.0.0.0)
    STORAGEOS_API_ENDPOINT: StorageOS api address (default: storageos)
    STORAGEOS_API_SECRET_PATH: Directory holding username/password files
    FENCER_NODE_POLL_INTERVAL, FENCER_NODE_EXPIRY_INTERVAL, FENCER_WORKERS,
    FENCER_RETRY_INTERVAL, FENCER_TIMEOUT: fencing tunables (seconds/count)
"""
import argparse
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(description="Run StorageOS node fencing controller")
    parser.add_argument("--host", default=os.getenv("FENCER_BIND_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("FENCER_API_PORT", "8080")))
    parser.add_argument("--api-endpoint", default=os.getenv("STORAGEOS_API_ENDPOINT", "storageos"))
    parser.add_argument("--api-secret-path", default=os.getenv("STORAGEOS_API_SECRET_PATH", "/etc/storageos/secrets/api"))
    parser.add_argument("--kubeconfig", default=os.getenv("KUBECONFIG"))
    parser.add_argument("--log-level", default=os.getenv("FENCER_LOG_LEVEL", "INFO"))
    args = parser.parse_args()

    print("=" * 60)
    print("StorageOS Node Fencer")
    print("=" * 60)
    print(f"API Address: {args.host}:{args.port}")
    print(f"StorageOS API: {args.api_endpoint}")
    print(f"Credentials: {args.api_secret_path}")
    print("=" * 60)

    # Set environment variables for service startup
    os.environ["FENCER_API_PORT"] = str(args.port)
    os.environ["FENCER_BIND_HOST"] = args.host
    os.environ["STORAGEOS_API_ENDPOINT"] = args.api_endpoint
    os.environ["STORAGEOS_API_SECRET_PATH"] = args.api_secret_path
    os.environ["FENCER_LOG_LEVEL"] = args.log_level
    if args.kubeconfig:
        os.environ["KUBECONFIG"] = args.kubeconfig

    uvicorn.run("fencer.service:app", host=args.host, port=args.port, reload=False)


if __name__ == "__main__":
    main()
