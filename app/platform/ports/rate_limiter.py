from typing import Protocol, runtime_checkable

@runtime_checkable
class RateLimiterPort(Protocol):
    async def acquire(self, user_id: str, channels: list[str]) -> tuple[str, float] | None:
        """Atomically count one send on every channel.

        Returns None when all channels had capacity (and were counted), or
        (channel, retry_after_seconds) for the first channel at its cap, in
        which case nothing was counted.
        """
        ...

    async def reset(self, user_id: str | None = None) -> None: ...
