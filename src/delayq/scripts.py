"""Atomic queue operations, implemented as Lua scripts.

Each script runs inside Redis as one atomic step, which is what lets
several schedulers (or a scheduler racing workers) touch the same queue
without locks. Scripts are registered lazily on the queue's connection
and invoked with EVALSHA.

Delayed jobs live in the ``delayed`` sorted set scored by
``timestamp * 0x1000 + counter``, so the due time is ``floor(score / 0x1000)``.
"""

import logging
from typing import TYPE_CHECKING, Any

from redis.commands.core import AsyncScript

from delayq.errors import JobStalledError

if TYPE_CHECKING:
    from delayq.queue_base import QueueBase

logger = logging.getLogger(__name__)

# Upper bound of jobs promoted per call
MAX_PROMOTED_PER_CALL = 1000

UPDATE_DELAY_SET = """
-- KEYS: delayed, wait, priority, paused, meta, events, delay
-- ARGV: job key prefix, timestamp (ms), max jobs per call
local rcall = redis.call

-- unpack() is bounded by the Lua stack, so large id lists go in slices
local function batched(command, key, ids)
  for i = 1, #ids, 5000 do
    rcall(command, key, unpack(ids, i, math.min(i + 4999, #ids)))
  end
end

local maxScore = tonumber(ARGV[2]) * 0x1000 + 0xfff
local jobs = rcall("ZRANGEBYSCORE", KEYS[1], 0, maxScore, "LIMIT", 0, tonumber(ARGV[3]))

if #jobs > 0 then
  batched("ZREM", KEYS[1], jobs)

  local target = KEYS[2]
  if rcall("HEXISTS", KEYS[5], "paused") == 1 then
    target = KEYS[4]
  end

  for _, jobId in ipairs(jobs) do
    local jobKey = ARGV[1] .. jobId
    local priority = tonumber(rcall("HGET", jobKey, "priority")) or 0

    if priority == 0 then
      rcall("LPUSH", target, jobId)
    else
      rcall("ZADD", KEYS[3], priority, jobId)
      local count = rcall("ZCOUNT", KEYS[3], 0, priority)
      local len = rcall("LLEN", target)
      local id = rcall("LINDEX", target, len - (count - 1))
      if id then
        rcall("LINSERT", target, "BEFORE", id, jobId)
      else
        rcall("RPUSH", target, jobId)
      end
    end

    rcall("HSET", jobKey, "delay", 0)
    rcall("XADD", KEYS[6], "*", "event", "waiting", "jobId", jobId, "prev", "delayed")
  end
end

local nextJob = rcall("ZRANGE", KEYS[1], 0, 0, "WITHSCORES")
if #nextJob > 0 then
  local nextTimestamp = math.floor(tonumber(nextJob[2]) / 0x1000)
  local id = rcall("XADD", KEYS[7], "*", "nextTimestamp", nextTimestamp)
  return {nextTimestamp, id}
end

return {0, ""}
"""

MOVE_STALLED_JOBS_TO_WAIT = """
-- KEYS: stalled, wait, active, failed, stalled-check, meta, paused, events
-- ARGV: max stalled count, job key prefix, timestamp (ms), stalled interval (ms),
--       failed reason
local rcall = redis.call

local function batched(command, key, ids)
  for i = 1, #ids, 5000 do
    rcall(command, key, unpack(ids, i, math.min(i + 4999, #ids)))
  end
end

-- Only one sweep per stalled interval, whoever gets here first
if rcall("EXISTS", KEYS[5]) == 1 then
  return {{}, {}}
end
rcall("SET", KEYS[5], ARGV[3], "PX", ARGV[4])

local failed = {}
local stalled = {}
local maxStalledCount = tonumber(ARGV[1])

local candidates = rcall("SMEMBERS", KEYS[1])
if #candidates > 0 then
  rcall("DEL", KEYS[1])

  local target = KEYS[2]
  if rcall("HEXISTS", KEYS[6], "paused") == 1 then
    target = KEYS[7]
  end

  for _, jobId in ipairs(candidates) do
    local jobKey = ARGV[2] .. jobId

    -- A worker still holding the lock has proven it is alive
    if rcall("EXISTS", jobKey .. ":lock") == 0 then
      local removed = rcall("LREM", KEYS[3], 1, jobId)
      if removed > 0 then
        local stalledCount = rcall("HINCRBY", jobKey, "stalledCounter", 1)
        if stalledCount > maxStalledCount then
          rcall("ZADD", KEYS[4], ARGV[3], jobId)
          rcall("HSET", jobKey, "failedReason", ARGV[5], "finishedOn", ARGV[3])
          rcall("XADD", KEYS[8], "*", "event", "failed", "jobId", jobId,
            "prev", "active", "failedReason", ARGV[5])
          table.insert(failed, jobId)
        else
          rcall("RPUSH", target, jobId)
          rcall("XADD", KEYS[8], "*", "event", "waiting", "jobId", jobId,
            "prev", "active")
          rcall("XADD", KEYS[8], "*", "event", "stalled", "jobId", jobId)
          table.insert(stalled, jobId)
        end
      end
    end
  end
end

-- Whatever is active now must be seen again before the next sweep
local active = rcall("LRANGE", KEYS[3], 0, -1)
batched("SADD", KEYS[1], active)

return {failed, stalled}
"""


def parse_update_delay_set_result(raw: Any) -> tuple[int | None, str | None]:
    """Decode ``{nextTimestamp, streamId}``; zero or empty means nothing pending."""
    if not raw:
        return None, None
    next_timestamp = int(raw[0]) if raw[0] else None
    cursor = raw[1] if len(raw) > 1 and raw[1] else None
    return next_timestamp, cursor


def parse_move_stalled_result(raw: Any) -> tuple[list[str], list[str]]:
    """Decode ``{failedIds, stalledIds}``."""
    if not raw:
        return [], []
    failed = list(raw[0]) if len(raw) > 0 and raw[0] else []
    stalled = list(raw[1]) if len(raw) > 1 and raw[1] else []
    return failed, stalled


class Scripts:
    """The two atomic operations the scheduler depends on."""

    def __init__(self, queue: "QueueBase"):
        self._queue = queue
        self._registered: dict[str, AsyncScript] = {}

    def _script(self, name: str, source: str) -> AsyncScript:
        if name not in self._registered:
            client = self._queue.connection.client
            self._registered[name] = client.register_script(source)
        return self._registered[name]

    async def update_delay_set(self, timestamp: int) -> tuple[int | None, str | None]:
        """Promote delayed jobs due at or before ``timestamp``.

        Returns:
            The next pending due time (ms) and the delay stream id to resume
            reading from, or ``(None, None)`` when no delayed job remains.
        """
        keys = self._queue.keys
        script = self._script("update_delay_set", UPDATE_DELAY_SET)
        raw = await script(
            keys=[
                keys.delayed,
                keys.wait,
                keys.priority,
                keys.paused,
                keys.meta,
                keys.events,
                keys.delay,
            ],
            args=[keys.job_prefix, timestamp, MAX_PROMOTED_PER_CALL],
        )
        return parse_update_delay_set_result(raw)

    async def move_stalled_jobs_to_wait(
        self, timestamp: int
    ) -> tuple[list[str], list[str]]:
        """Recover stalled jobs.

        Returns:
            Ids moved to failed (stall limit exceeded) and ids moved back
            to waiting.
        """
        keys = self._queue.keys
        opts = self._queue.opts
        script = self._script("move_stalled_jobs_to_wait", MOVE_STALLED_JOBS_TO_WAIT)
        raw = await script(
            keys=[
                keys.stalled,
                keys.wait,
                keys.active,
                keys.failed,
                keys.stalled_check,
                keys.meta,
                keys.paused,
                keys.events,
            ],
            args=[
                opts.max_stalled_count,
                keys.job_prefix,
                timestamp,
                opts.stalled_interval,
                str(JobStalledError()),
            ],
        )
        failed, stalled = parse_move_stalled_result(raw)
        if failed or stalled:
            logger.debug(
                "stalled_jobs_recovered",
                extra={
                    "queue.name": self._queue.name,
                    "jobs.failed": len(failed),
                    "jobs.stalled": len(stalled),
                },
            )
        return failed, stalled
