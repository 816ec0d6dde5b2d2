"""
Example usage of the tfwd_client library.

Reads TFWD_API_KEY / TFWD_PROJECT_ID from the environment (or .env) and
points at TFWD_API_URL, https://api.logsicle.com by default.
"""

import asyncio
import logging

from tfwd_client import ForwarderClient, PageClient, install_logging_bridge


async def process_example():
    """Long-running process usage."""
    print("=== Process Usage ===")

    async with ForwarderClient(service_name="billing-worker") as client:
        client.app.info("worker started", fields={"queue": "invoices"})
        client.event.send("invoice.created", channel_name="billing", tags=["eu"])

        # Forward stdlib logging too
        log = logging.getLogger("billing")
        log.setLevel(logging.INFO)
        install_logging_bridge(client.app, log)
        log.info("processing %d invoices", 12)

        try:
            raise RuntimeError("card declined")
        except RuntimeError as exc:
            client.app.exception("payment failed", exc, fields={"invoice": "inv-42"})

        print(f"Buffered: {client.engine.size}")
    # Exiting the block drained everything and closed the HTTP client.


def page_example():
    """Host with hidden/unload transitions."""
    print("=== Page Usage ===")

    client = PageClient(host="kiosk-3")
    client.app.info("screen shown")
    client.event.send("button.click", channel_id="ui-main", metadata={"id": "buy"})

    # Wire these to the host's lifecycle callbacks
    sends = client.handle_visibility_change("hidden")
    print(f"Beacon sends on hide: {sends}")


if __name__ == "__main__":
    asyncio.run(process_example())
    page_example()
