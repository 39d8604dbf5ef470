"""
Environment Snapshots
====================

Captures the host environment attached to every reported error and the
system state snapshot stored alongside it.
"""

import logging
import os
import platform
import socket
from typing import Awaitable, Callable, Dict, Optional

import psutil

from .models import ErrorMetadata, NetworkConditions, ResourceUsage, SystemState, utcnow

logger = logging.getLogger(__name__)


def detect_device() -> str:
    """Classify the host as container, virtual machine or server."""
    if os.path.exists("/.dockerenv") or os.environ.get("KUBERNETES_SERVICE_HOST"):
        return "container"
    if platform.machine().lower().startswith(("arm", "aarch64")):
        return "arm_server"
    return "server"


def get_network_conditions() -> NetworkConditions:
    """Network counters for the host."""
    counters = psutil.net_io_counters()
    stats = psutil.net_if_stats()
    is_online = any(s.isup for name, s in stats.items() if name != "lo")
    error_total = counters.errin + counters.errout + counters.dropin + counters.dropout
    packet_total = max(counters.packets_sent + counters.packets_recv, 1)

    return NetworkConditions(
        speed="unknown",
        latency=0.0,
        packet_loss=round(error_total / packet_total * 100, 4),
        connection_type="ethernet" if is_online else "none",
        is_online=is_online,
        bytes_sent=counters.bytes_sent,
        bytes_received=counters.bytes_recv
    )


def get_resource_usage() -> ResourceUsage:
    """Memory, CPU and disk usage of the host."""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage("/")

    return ResourceUsage(
        memory_used=memory.used,
        memory_available=memory.available,
        memory_percentage=memory.percent,
        cpu_usage=psutil.cpu_percent(interval=None),
        cpu_cores=psutil.cpu_count() or 1,
        storage_used=disk.used,
        storage_available=disk.free
    )


def gather_error_metadata(version: str = "1.0.0") -> ErrorMetadata:
    """Collect environment metadata. Never raises."""
    metadata = ErrorMetadata(
        host=socket.gethostname(),
        device=detect_device(),
        os=f"{platform.system()} {platform.release()}",
        runtime=f"{platform.python_implementation()} {platform.python_version()}",
        version=version
    )

    try:
        metadata.network_conditions = get_network_conditions()
        metadata.resource_usage = get_resource_usage()
    except Exception as e:
        logger.warning(f"Could not collect resource metadata: {e}")

    return metadata


class SystemStateCollector:
    """
    Builds ``SystemState`` snapshots.

    Host figures come from psutil. Application figures (queue length, API
    quota, ...) come from optional async probes registered by the host
    application; missing probes leave the defaults in place.
    """

    def __init__(self):
        self.probes: Dict[str, Callable[[], Awaitable[float]]] = {}
        self.last_successful_operation = None

    def register_probe(self, field_name: str, probe: Callable[[], Awaitable[float]]):
        """Register an async probe for a ``SystemState`` field."""
        if not hasattr(SystemState(), field_name):
            raise ValueError(f"Unknown system state field: {field_name}")
        self.probes[field_name] = probe

    def record_success(self):
        """Mark that an operation just succeeded."""
        self.last_successful_operation = utcnow()

    async def capture(self, active_operations: Optional[int] = None) -> SystemState:
        state = SystemState(last_successful_operation=self.last_successful_operation)

        try:
            state.system_load = os.getloadavg()[0] if hasattr(os, "getloadavg") else psutil.cpu_percent(interval=None)
            state.memory_usage = psutil.virtual_memory().percent
            state.disk_space = psutil.disk_usage("/").free
        except Exception as e:
            logger.warning(f"Could not read host state: {e}")

        if active_operations is not None:
            state.active_operations = active_operations

        for field_name, probe in self.probes.items():
            try:
                setattr(state, field_name, await probe())
            except Exception as e:
                logger.warning(f"System state probe {field_name} failed: {e}")

        return state
