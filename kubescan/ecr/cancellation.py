"""
Module providing the cancellation token shared by every stage of a scan run.
"""

import asyncio
import logging
import signal

from .exceptions import ScanCancelledError


logger = logging.getLogger(__name__)


class Cancellation:
    """
    Cooperative cancellation token.

    Workers check the token between units of work and use ``sleep`` for any
    waiting, so that a deadline or a termination signal stops them promptly.
    """
    def __init__(self):
        self._event = asyncio.Event()
        self._timer = None
        self._signals = []
        self.reason = None

    @property
    def cancelled(self):
        return self._event.is_set()

    def cancel(self, reason = "cancelled"):
        """
        Cancel the token. Only the first reason is kept.
        """
        if not self.cancelled:
            logger.info(f'Cancelling scan: {reason}')
            self.reason = reason
            self._event.set()

    def check(self):
        """
        Raise ``ScanCancelledError`` if the token has been cancelled.
        """
        if self.cancelled:
            raise ScanCancelledError(self.reason)

    async def wait(self):
        """
        Wait until the token is cancelled.
        """
        await self._event.wait()

    async def sleep(self, delay):
        """
        Sleep for the given delay, raising ``ScanCancelledError`` as soon as the token is cancelled.
        """
        self.check()
        try:
            await asyncio.wait_for(self._event.wait(), delay)
        except asyncio.TimeoutError:
            return
        self.check()

    async def guard(self, awaitable):
        """
        Await the given awaitable, abandoning it with ``ScanCancelledError`` if the token
        is cancelled first.
        """
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when = asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.wait({task})
        if task.cancelled():
            self.check()
        return task.result()

    def cancel_after(self, timeout):
        """
        Cancel the token once the given number of seconds has elapsed.
        """
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(timeout, self.cancel, f'timed out after {timeout}s')

    def cancel_on_signals(self, *signals):
        """
        Cancel the token when any of the given signals (default SIGINT and SIGTERM) is received.
        """
        loop = asyncio.get_running_loop()
        for sig in (signals or (signal.SIGINT, signal.SIGTERM)):
            try:
                loop.add_signal_handler(sig, self.cancel, f'received {sig.name}')
            except (NotImplementedError, RuntimeError):
                # Signal handlers are only available on the main thread of Unix loops
                logger.debug(f'Unable to install handler for {sig.name}')
            else:
                self._signals.append(sig)

    def close(self):
        """
        Remove any timer and signal handlers installed by this token.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        loop = asyncio.get_running_loop()
        while self._signals:
            loop.remove_signal_handler(self._signals.pop())
