# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""Task helpers shared by the player and the control-socket client."""

import asyncio
import logging

log = logging.getLogger(__name__)


async def cancel_and_wait(task: asyncio.Task | None) -> None:
    """Cancel *task* and wait until it has finished unwinding.

    The task's own result, error or cancellation is consumed here.  A
    cancellation of the *calling* task still propagates: asyncio.wait()
    raises CancelledError in the caller without touching *task*.
    """
    if task is None:
        return
    if not task.done():
        task.cancel()
        await asyncio.wait({task})
    if not task.cancelled() and task.exception() is not None:
        log.debug("Task %s ended with %r", task.get_name(), task.exception())
