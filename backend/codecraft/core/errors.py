"""Error taxonomy.

Expected failures (a flaky provider, an unavailable sandbox, a slot that ran
out of attempts, a caller asking for something in the wrong state) derive
from CodecraftError directly. Defects derive from FatalPipelineError and are
never retried or turned into a corrective chat message.
"""


class CodecraftError(Exception):
    pass


class CompletionError(CodecraftError):
    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class SandboxError(CodecraftError):
    pass


class ThreadNotFoundError(CodecraftError):
    def __init__(self, thread_id: str):
        super().__init__(f"Thread not found: {thread_id}")
        self.thread_id = thread_id


class InvalidThreadStateError(CodecraftError):
    pass


class ActivityNotFoundError(CodecraftError):
    def __init__(self, activity_id: str):
        super().__init__(f"Activity not found: {activity_id}")
        self.activity_id = activity_id


class ActivityLockedError(CodecraftError):
    pass


class RunFailedError(CodecraftError):
    """At least one slot exhausted its attempts. `reason` is safe to show users."""

    def __init__(self, reason: str, slot_index: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.slot_index = slot_index


class FatalPipelineError(CodecraftError):
    pass


class ContractDefinitionError(FatalPipelineError):
    pass


class PlannerInvariantError(FatalPipelineError):
    pass


class InvalidTransitionError(FatalPipelineError):
    pass


class PersistenceInvariantError(FatalPipelineError):
    pass
