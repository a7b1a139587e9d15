"""Redis key naming for a queue."""

from dataclasses import dataclass

DEFAULT_PREFIX = "bull"


@dataclass(frozen=True)
class QueueKeys:
    """Key names used by one queue.

    Every key is ``<prefix>:<queue name>:<type>``. Job hashes live at
    ``<prefix>:<queue name>:<job id>`` (see ``job_prefix``).
    """

    name: str
    prefix: str = DEFAULT_PREFIX

    def to_key(self, key_type: str) -> str:
        return f"{self.prefix}:{self.name}:{key_type}"

    @property
    def job_prefix(self) -> str:
        return self.to_key("")

    @property
    def wait(self) -> str:
        return self.to_key("wait")

    @property
    def active(self) -> str:
        return self.to_key("active")

    @property
    def paused(self) -> str:
        return self.to_key("paused")

    @property
    def delayed(self) -> str:
        return self.to_key("delayed")

    @property
    def priority(self) -> str:
        return self.to_key("priority")

    @property
    def stalled(self) -> str:
        return self.to_key("stalled")

    @property
    def stalled_check(self) -> str:
        return self.to_key("stalled-check")

    @property
    def failed(self) -> str:
        return self.to_key("failed")

    @property
    def meta(self) -> str:
        return self.to_key("meta")

    @property
    def events(self) -> str:
        return self.to_key("events")

    @property
    def delay(self) -> str:
        """The delay stream: one entry per delayed job admission."""
        return self.to_key("delay")
