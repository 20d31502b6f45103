"""
Request records: the state of one outstanding protocol exchange.

A record moves through pending -> sent -> accepted -> completed.  The UI
creates records and may reset ``sent`` to force a resend; the downloading
loop performs every other transition.  ``accepted`` never goes back to
False once set.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field


def new_request_id() -> str:
    return str(uuid.uuid4())


class RequestState:
    """Transitions shared by DownloadRequest and ExploreRequest."""

    sent: bool
    sent_time: float | None
    accepted: bool
    ack_time: float | None
    completed: bool

    def mark_sent(self, now: float | None = None) -> None:
        self.sent = True
        self.sent_time = time.monotonic() if now is None else now

    def mark_accepted(self, now: float | None = None) -> bool:
        """Accept the request.  Returns False if it was already accepted."""
        if self.accepted:
            return False
        now = time.monotonic() if now is None else now
        if not self.sent:
            # The reply proves the request went out, even if the UI reset it.
            self.mark_sent(now)
        self.accepted = True
        self.ack_time = now
        return True

    def mark_completed(self) -> None:
        self.completed = True

    def reset_for_resend(self) -> None:
        self.sent = False
        self.sent_time = None

    def resend_block_reason(self, cooldown: float, now: float | None = None) -> str | None:
        """Why a manual resend is not allowed yet, or None if it is."""
        if not self.sent:
            return "Request not yet sent"
        if self.accepted:
            return "Request already accepted"
        if self.sent_time is None:
            return "Unknown state"
        now = time.monotonic() if now is None else now
        if now - self.sent_time < cooldown:
            return f"Wait {int(cooldown)} seconds before resending"
        return None

    @property
    def status(self) -> str:
        if self.completed:
            return "completed"
        if self.accepted:
            return "accepted"
        if self.sent:
            return "sent"
        return "pending"


@dataclass
class DownloadRequest(RequestState):
    """A request for one named file from a remote peer."""

    peer: str
    filename: str
    request_id: str = field(default_factory=new_request_id)
    sent: bool = False
    sent_time: float | None = None
    ack_time: float | None = None
    accepted: bool = False
    completed: bool = False
    created_at: float = field(default_factory=time.time)


@dataclass
class ExploreRequest(RequestState):
    """A request for the list of files a remote peer currently offers."""

    peer: str
    request_id: str = field(default_factory=new_request_id)
    advertise_files: list[str] = field(default_factory=list)
    sent: bool = False
    sent_time: float | None = None
    ack_time: float | None = None
    accepted: bool = False
    completed: bool = False
    created_at: float = field(default_factory=time.time)


class RequestBook:
    """Every download and explore request of this process.

    ``lock`` guards both lists.  Records live in memory only.
    """

    def __init__(self):
        self.lock = asyncio.Lock()
        self.downloads: list[DownloadRequest] = []
        self.explores: list[ExploreRequest] = []

    async def add_download(self, peer: str, filename: str) -> DownloadRequest:
        request = DownloadRequest(peer=peer, filename=filename)
        async with self.lock:
            self.downloads.append(request)
        return request

    async def add_explore(self, peer: str) -> ExploreRequest:
        request = ExploreRequest(peer=peer)
        async with self.lock:
            self.explores.append(request)
        return request

    async def remove(self, request_id: str) -> bool:
        async with self.lock:
            for records in (self.downloads, self.explores):
                for i, record in enumerate(records):
                    if record.request_id == request_id:
                        del records[i]
                        return True
        return False

    async def resend(self, request_id: str, cooldown: float) -> str | None:
        """Reset a request so the next send pass transmits it again.

        Returns the reason the resend was refused, or None on success.
        """
        async with self.lock:
            record = self.find_download(request_id) or self.find_explore(request_id)
            if record is None:
                return "Unknown request"
            reason = record.resend_block_reason(cooldown)
            if reason is None:
                record.reset_for_resend()
            return reason

    # Lookups do not take the lock; callers already hold it.

    def find_download(self, request_id: str) -> DownloadRequest | None:
        for record in self.downloads:
            if record.request_id == request_id:
                return record
        return None

    def find_explore(self, request_id: str) -> ExploreRequest | None:
        for record in self.explores:
            if record.request_id == request_id:
                return record
        return None

    def unsent_downloads(self) -> list[DownloadRequest]:
        return [r for r in self.downloads if not r.sent]

    def unsent_explores(self) -> list[ExploreRequest]:
        return [r for r in self.explores if not r.sent]
