"""Pass-through relay of a provider stream.

Forwards the provider's bytes unmodified, chunk by chunk, under a
wall-clock timeout.  Client disconnect cancels the generator, which
closes the upstream response.  The exchange is logged only when the
body was relayed completely.
"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from datetime import timedelta

from tutorchat.core.errors import ProviderError
from tutorchat.core.handler import StreamResult
from tutorchat.core.metrics import (
    STREAM_RELAY_DURATION_SECONDS,
    STREAM_RELAYS_ACTIVE,
    STREAM_RELAYS_TOTAL,
)
from tutorchat.infra.telemetry import (
    ATTR_PROVIDER_MODEL,
    ATTR_STREAM_BYTES,
    ATTR_STREAM_OUTCOME,
    SPAN_STREAM_RELAY,
    tracer,
)

logger = logging.getLogger(__name__)

STREAM_RESPONSE_HEADERS = {"Cache-Control": "no-cache"}


async def relay_stream(
    result: StreamResult,
    *,
    stream_timeout: timedelta,
) -> AsyncGenerator[bytes, None]:
    """Yield the provider body as it arrives.

    Once the status line is sent there is no way to report a failure
    in-band without altering the provider's format, so errors and
    timeouts end the body early and are logged.
    """
    stream = result.stream
    with tracer.start_as_current_span(SPAN_STREAM_RELAY) as span:
        span.set_attribute(ATTR_PROVIDER_MODEL, stream.provider_model)
        outcome = "ok"
        STREAM_RELAYS_ACTIVE.inc()
        start = time.monotonic()
        try:
            async with asyncio.timeout(stream_timeout.total_seconds()):
                async for chunk in stream.iter_bytes():
                    yield chunk
        except TimeoutError:
            outcome = "timeout"
            logger.warning("Provider stream exceeded %s, closing.", stream_timeout)
        except ProviderError as exc:
            outcome = "error"
            span.record_exception(exc)
            logger.warning("Provider stream failed: %s", exc)
        except (asyncio.CancelledError, GeneratorExit):
            outcome = "cancelled"
            logger.debug("Client disconnected during provider stream.")
            raise
        finally:
            await stream.aclose()
            if outcome == "ok" and stream.completed:
                result.complete()
            else:
                result.abandon()
            span.set_attribute(ATTR_STREAM_OUTCOME, outcome)
            span.set_attribute(ATTR_STREAM_BYTES, stream.collector.byte_count)
            STREAM_RELAYS_ACTIVE.dec()
            STREAM_RELAYS_TOTAL.labels(status=outcome).inc()
            STREAM_RELAY_DURATION_SECONDS.observe(time.monotonic() - start)
