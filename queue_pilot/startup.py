"""Startup checks run before the server starts serving."""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from queue_pilot.broker.types import HealthResult

NO_SCHEMAS_WARNING = ("No schemas loaded; schema validation tools will have "
                      "no schemas to validate against")


@dataclass
class SchemaCountCheck:
    count: int
    warning: Optional[str]


@dataclass
class ConnectivityCheck:
    reachable: bool
    status: Optional[str]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def check_schema_count(count: int) -> SchemaCountCheck:
    return SchemaCountCheck(count=count, warning=NO_SCHEMAS_WARNING if count == 0 else None)


def check_broker_connectivity(probe: Callable[[], HealthResult], broker: str = "Broker",
                              timeout: float = 3.0) -> ConnectivityCheck:
    """Run ``probe`` with a deadline.

    The probe runs on a worker thread. If it has not returned after
    ``timeout`` seconds the check reports unreachable and the thread is left
    to finish in the background.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="health-probe")
    try:
        future = executor.submit(probe)
        try:
            result = future.result(timeout=timeout)
        except FutureTimeoutError:
            return ConnectivityCheck(reachable=False, status=None,
                                     message="Health check timed out")
        except Exception as e:
            return ConnectivityCheck(reachable=False, status=None, message=str(e))
    finally:
        executor.shutdown(wait=False)

    if result.ok:
        return ConnectivityCheck(reachable=True, status=result.status,
                                 message=f"{broker} is healthy")
    return ConnectivityCheck(reachable=True, status=result.status,
                             message=f"{broker} is unhealthy: {result.reason or result.status}")
