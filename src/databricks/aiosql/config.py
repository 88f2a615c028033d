import logging
from dataclasses import dataclass
from typing import Optional

from databricks.aiosql.backend.types import ArrowNativeTypes

logger = logging.getLogger(__name__)

_config_bounds = {  # (type, min, max)
    "direct_results_default_max_rows": (int, 1, 10_000_000),
    "fetch_chunk_default_max_rows": (int, 1, 10_000_000),
    "retry_delay_min": (float, 0.1, 60),
    "retry_delay_max": (float, 5, 3600),
    "retry_max_attempts": (int, 1, 60),
    "retries_timeout": (float, 1, 86400),
    "cloud_fetch_concurrent_downloads": (int, 1, 64),
    "poll_interval": (float, 0.01, 60),
}


def _bound(min_x, max_x, x):
    """Bound x by [min_x, max_x]

    min_x or max_x being None means unbounded in that respective side.
    """
    if min_x is None and max_x is None:
        return x
    if min_x is None:
        return min(max_x, x)
    if max_x is None:
        return max(min_x, x)
    return min(max_x, max(min_x, x))


@dataclass
class ClientConfig:
    """Tunables shared by every component of a client.

    An instance is created once per Client and handed to sessions,
    operations and result handlers through the ClientContext.
    """

    direct_results_default_max_rows: int = 100_000
    fetch_chunk_default_max_rows: int = 100_000

    arrow_enabled: bool = True
    use_arrow_native_timestamps: bool = True
    use_arrow_native_decimals: bool = True
    use_arrow_native_complex_types: bool = True

    socket_timeout: float = 900
    retry_max_attempts: int = 30
    retries_timeout: float = 900
    retry_delay_min: float = 1
    retry_delay_max: float = 60

    use_cloud_fetch: bool = True
    cloud_fetch_concurrent_downloads: int = 10
    link_expiry_buffer_secs: int = 0
    use_lz4_compression: bool = True

    poll_interval: float = 0.1
    user_agent_entry: Optional[str] = None

    def __post_init__(self):
        # Bound numeric settings by policy. Log.warn when a given value gets restricted.
        for key, (type_, min_, max_) in _config_bounds.items():
            given = type_(getattr(self, key))
            bound = _bound(min_, max_, given)
            setattr(self, key, bound)
            if bound != given:
                logger.warning(
                    "Override out of policy config parameter: "
                    + "{} given {}, restricted to {}".format(key, given, bound)
                )

        if self.retry_max_attempts > 1 and self.retry_delay_min > self.retry_delay_max:
            raise ValueError(
                "Invalid configuration enables retries with retry delay min(={}) > max(={})".format(
                    self.retry_delay_min, self.retry_delay_max
                )
            )

    def arrow_native_types(self) -> ArrowNativeTypes:
        return ArrowNativeTypes(
            timestamp_as_arrow=self.use_arrow_native_timestamps,
            decimal_as_arrow=self.use_arrow_native_decimals,
            complex_types_as_arrow=self.use_arrow_native_complex_types,
            # interval types are not decoded natively
            interval_types_as_arrow=False,
        )
