# /flowchat/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager

import tenacity
from fastapi import FastAPI

from flowchat.config.settings import settings
from flowchat.errors import SdkError
from flowchat.services.flow_registry import flow_registry
from flowchat.services.host_gateway import HostPlatformSDK, get_host_gateway
from flowchat.services.retrieval_service import retrieval_service
from flowchat.utils.alerting import alerting_service
from flowchat.utils.logging import setup_logging

# Application lifespan: logging setup, a one-time host probe that pins the
# host/demo mode, and client cleanup on shutdown.

logger = logging.getLogger(__name__)


@tenacity.retry(
    retry=tenacity.retry_if_exception_type(SdkError),
    stop=tenacity.stop_after_attempt(settings.host_probe_attempts),
    wait=tenacity.wait_exponential(multiplier=1, min=0.5, max=5),
    before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def probe_host(sdk: HostPlatformSDK) -> bool:
    """Read-only availability probe, retried at startup only."""
    return bool(await sdk.ping())


async def detect_host_mode() -> bool:
    gateway = get_host_gateway()
    if gateway.sdk is None:
        gateway.pin_availability(False)
        return False
    try:
        available = await probe_host(gateway.sdk)
    except SdkError as e:
        logger.warning(f"Host platform unreachable after {settings.host_probe_attempts} attempts: {e}")
        available = False
    gateway.pin_availability(available)
    return available


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()

    logger.info("Application starting up...")
    logger.info(f"Flows available: {', '.join(flow.key for flow in flow_registry.list_flows())}")

    host_available = await detect_host_mode()
    logger.info(f"Running in {'host-integrated' if host_available else 'demo'} mode")

    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")

    await retrieval_service.client.aclose()
    await get_host_gateway().aclose()
    await alerting_service.cleanup()
