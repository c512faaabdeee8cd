"""Bidirectional stream binding utility."""

import asyncio

from phasing.utils.logger import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 65536


async def bind_reader_writer(reader, writer) -> int:
    """
    Pipe data from reader to writer until EOF or error.

    Args:
        reader: Stream reader (asyncio or asyncssh).
        writer: Stream writer (asyncio or asyncssh).

    Returns:
        Number of bytes copied.
    """
    copied = 0
    while True:
        try:
            data = await reader.read(CHUNK_SIZE)
            if not data:
                break
            writer.write(data)
            await writer.drain()
            copied += len(data)
        except (OSError, EOFError) as e:
            logger.debug(f"Copy stopped after {copied} bytes: {e!r}")
            break
    return copied


async def _close_writer(writer) -> None:
    writer.close()
    try:
        await asyncio.wait_for(writer.wait_closed(), timeout=1.0)
    except (OSError, EOFError, asyncio.TimeoutError):
        pass


async def bind_connection(
    inbound_reader,
    inbound_writer,
    outbound_reader,
    outbound_writer,
    label: str = "",
) -> tuple[int, int]:
    """
    Relay bytes both ways between two open connections.

    Returns once either direction finishes and both connections are closed.
    Closing both ends unblocks the direction that is still running, which is
    then awaited so neither copy task outlives this call.

    Returns:
        Tuple of (inbound->outbound bytes, outbound->inbound bytes).
    """
    to_outbound = asyncio.create_task(bind_reader_writer(inbound_reader, outbound_writer))
    to_inbound = asyncio.create_task(bind_reader_writer(outbound_reader, inbound_writer))

    try:
        await asyncio.wait([to_outbound, to_inbound], return_when=asyncio.FIRST_COMPLETED)
    finally:
        await _close_writer(inbound_writer)
        await _close_writer(outbound_writer)
        results = await asyncio.gather(to_outbound, to_inbound, return_exceptions=True)

    sent, received = (r if isinstance(r, int) else 0 for r in results)
    logger.debug(f"{label} Relay finished: {sent} bytes out, {received} bytes back")
    return sent, received
