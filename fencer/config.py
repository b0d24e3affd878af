import os


def _int_env(name: str, default: int) -> int:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return int(raw)
    except Exception:
        return default


def _float_env(name: str, default: float) -> float:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return float(raw)
    except Exception:
        return default


def _str_env(name: str, default: str) -> str:
    return str(os.getenv(name, default)).strip() or default


# Backend identity
DRIVER_NAME = _str_env("FENCER_DRIVER_NAME", "csi.storageos.com")
FENCING_LABEL = _str_env("FENCER_LABEL", "storageos.com/fenced")
PROVISIONER_ANNOTATION = "volume.beta.kubernetes.io/storage-provisioner"

# Node health polling and cache expiry (seconds)
MIN_POLL_INTERVAL = 5.0
NODE_POLL_INTERVAL = _float_env("FENCER_NODE_POLL_INTERVAL", 5.0)
NODE_EXPIRY_INTERVAL = _float_env("FENCER_NODE_EXPIRY_INTERVAL", 3600.0)

# Fencing actions
FENCER_WORKERS = _int_env("FENCER_WORKERS", 5)
FENCER_RETRY_INTERVAL = _float_env("FENCER_RETRY_INTERVAL", 5.0)
FENCER_TIMEOUT = _float_env("FENCER_TIMEOUT", 25.0)

# StorageOS api
API_ENDPOINT = _str_env("STORAGEOS_API_ENDPOINT", "storageos")
API_SECRET_PATH = _str_env("STORAGEOS_API_SECRET_PATH", "/etc/storageos/secrets/api")
API_REFRESH_INTERVAL = _float_env("STORAGEOS_API_REFRESH_INTERVAL", 60.0)
API_RETRY_INTERVAL = _float_env("STORAGEOS_API_RETRY_INTERVAL", 5.0)

# Service
FENCER_API_PORT = _int_env("FENCER_API_PORT", 8080)
FENCER_BIND_HOST = _str_env("FENCER_BIND_HOST", "0.0.0.0")
DATABASE_URL = _str_env("FENCER_DATABASE_URL", "sqlite:///./fencer/data/fencer.db")
KUBECONFIG = os.getenv("KUBECONFIG") or None
LOG_LEVEL = _str_env("FENCER_LOG_LEVEL", "INFO")
