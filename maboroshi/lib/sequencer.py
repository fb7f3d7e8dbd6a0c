# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Request ids for superseding in-flight work.

Every user-initiated operation takes a fresh id.  A background task that
resumes after an await must check ``is_current(id)`` before it touches
session state; if a newer request was issued meanwhile it returns without
side effects.
"""


class RequestSequencer:
    def __init__(self):
        self._seq = 0
        self._active = 0

    def begin_request(self) -> int:
        """Issue a new id and make it the only active one."""
        self._seq += 1
        self._active = self._seq
        return self._active

    def is_current(self, request_id: int) -> bool:
        return request_id == self._active

    @property
    def active(self) -> int:
        return self._active
