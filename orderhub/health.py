"""
Health check endpoints for liveness and readiness probes.
"""
from datetime import datetime, timezone
from typing import Dict, Any
import psutil
from .logging import get_logger

logger = get_logger()


class HealthChecker:
    """
    Health checker for the orderhub service.

    Provides:
    - Liveness checks (is the service running?)
    - Readiness checks (can the service handle traffic?)
    """

    def __init__(self, store, service_name: str = "orderhub", version: str = "0.1.0"):
        self.store = store
        self.service_name = service_name
        self.version = version

    def _timestamp(self) -> str:
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def liveness(self) -> Dict[str, Any]:
        """
        Liveness check - basic health check.

        Returns:
            dict: Health status with service info and timestamp
        """
        return {
            "status": "ok",
            "service": self.service_name,
            "version": self.version,
            "timestamp": self._timestamp(),
        }

    async def readiness(self) -> Dict[str, Any]:
        """
        Readiness check - comprehensive health check.

        Checks:
        - Event store backend
        - Disk space availability
        - Memory availability

        Returns:
            dict: Readiness status with detailed check results
        """
        checks = {
            "event_store": await self._check_store(),
            "disk_space": self._check_disk_space(),
            "memory": self._check_memory(),
        }
        overall_status = "ready"
        if any(check["status"] == "error" for check in checks.values()):
            overall_status = "not_ready"

        return {
            "status": overall_status,
            "service": self.service_name,
            "version": self.version,
            "timestamp": self._timestamp(),
            "checks": checks,
        }

    async def _check_store(self) -> Dict[str, Any]:
        try:
            healthy = await self.store.health_check()
        except Exception as e:
            logger.warning("store_health_check_failed", error=str(e))
            return {"status": "error", "error": str(e)}
        return {
            "status": "ok" if healthy else "error",
            "adapter": type(self.store.adapter).__name__,
        }

    @staticmethod
    def _level(available: float, threshold: float) -> str:
        if available < threshold:
            return "error"
        if available < threshold * 2:
            return "warning"
        return "ok"

    def _check_disk_space(self, threshold_gb: float = 1.0) -> Dict[str, Any]:
        """Free space on the root filesystem; error below ``threshold_gb``."""
        try:
            disk = psutil.disk_usage("/")
        except Exception as e:
            logger.warning("disk_health_check_failed", error=str(e))
            return {"status": "error", "error": str(e)}
        available_gb = disk.free / (1024**3)
        return {
            "status": self._level(available_gb, threshold_gb),
            "available_gb": round(available_gb, 2),
            "used_percent": disk.percent,
        }

    def _check_memory(self, threshold_mb: float = 50.0) -> Dict[str, Any]:
        """Available system memory; error below ``threshold_mb``."""
        try:
            memory = psutil.virtual_memory()
        except Exception as e:
            logger.warning("memory_health_check_failed", error=str(e))
            return {"status": "error", "error": str(e)}
        available_mb = memory.available / (1024**2)
        return {
            "status": self._level(available_mb, threshold_mb),
            "available_mb": round(available_mb, 2),
            "used_percent": memory.percent,
        }
