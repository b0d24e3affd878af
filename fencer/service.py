"""
Fencer Service Entrypoint

FastAPI application for the node fencing controller.
Startup connects to Kubernetes and the StorageOS api, opens the fencing
journal and starts the reconciler threads; shutdown stops them.
"""
from fastapi import FastAPI
import logging
import threading

from fencer import config
from fencer.api import health, metrics
from fencer.database import create_session_factory
from fencer.events import EventJournal
from fencer.reconciler import FencerReconciler
from shared.kube_client import KubeClient, load_config
from shared.logging_config import setup_logging
from shared.storageos_client import StorageOSClient, StorageOSError
from shared.storageos_metrics import record_result

logger = logging.getLogger(__name__)

app = FastAPI(title="StorageOS Node Fencer")

app.include_router(health.router)
app.include_router(metrics.router)

# Global reconciler instance
reconciler = None
_shutdown = threading.Event()


def connect_api(secret_path: str, endpoint: str, retry_interval: float, stop: threading.Event):
    """
    Connect to the StorageOS api, retrying until it succeeds.

    The fencer is useless without the api, so this blocks. Returns None only
    if ``stop`` is set first.
    """
    attempt = 0
    while not stop.is_set():
        attempt += 1
        try:
            client = StorageOSClient.from_secret(secret_path, endpoint)
            logger.info(f"Connected to StorageOS api at {client.base_url}")
            record_result("setup")
            return client
        except (StorageOSError, OSError) as e:
            logger.warning(f"Failed to connect to StorageOS api (attempt {attempt}), retrying in {retry_interval}s: {e}")
            record_result("setup", e)
        stop.wait(retry_interval)
    return None


@app.on_event("startup")
def startup_init():
    """Connect to the apis, open the journal and start the fencer"""
    global reconciler

    setup_logging("fencer", config.LOG_LEVEL)
    _shutdown.clear()

    load_config(config.KUBECONFIG)
    cluster = KubeClient()

    api = connect_api(config.API_SECRET_PATH, config.API_ENDPOINT, config.API_RETRY_INTERVAL, _shutdown)
    if api is None:
        return

    journal = EventJournal(create_session_factory(config.DATABASE_URL))

    logger.info("Starting fencer...")
    reconciler = FencerReconciler(
        api,
        cluster,
        journal=journal,
        poll_interval=config.NODE_POLL_INTERVAL,
        expiry_interval=config.NODE_EXPIRY_INTERVAL,
        workers=config.FENCER_WORKERS,
        retry_interval=config.FENCER_RETRY_INTERVAL,
        timeout=config.FENCER_TIMEOUT,
        label=config.FENCING_LABEL,
        driver=config.DRIVER_NAME,
        refresh_interval=config.API_REFRESH_INTERVAL,
    )
    reconciler.start()

    # Inject reconciler into health API
    health.set_reconciler(reconciler, journal)

    logger.info("Fencer service startup complete")


@app.on_event("shutdown")
def shutdown_cleanup():
    """Stop the fencer on shutdown"""
    _shutdown.set()

    if reconciler:
        logger.info("Stopping fencer...")
        reconciler.stop()

    logger.info("Fencer service shutdown complete")


@app.get("/")
def root():
    return {
        "service": "fencer",
        "message": "StorageOS node fencing controller running",
    }
