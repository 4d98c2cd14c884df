"""File lifecycle finite state machine for the media sync pipeline.

Each file attempt gets its own FSM instance. The orchestrator advances it at
every pipeline stage, so an out-of-order call surfaces as a
``TransitionNotAllowed`` error, and the last active state names the stage a
failed file stopped in.

The FSM is purely a validation tool -- it has no callbacks and performs no
remote calls.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class FileLifecycleSM(StateMachine):
    """Lifecycle of one file through the upload pipeline.

    States:
        queued         -- Waiting for a worker slot.
        resolving      -- Looking up the catalog entity for the slot key.
        clearing       -- Deleting assets that occupy the slot.
        staging        -- Requesting a staged upload target.
        transferring   -- Posting bytes to the staged target.
        registering    -- Creating a managed file from the staged bytes.
        awaiting_ready -- Polling the registered file's status.
        attaching      -- Attaching media to the entity.
        linking        -- Linking the new media to a variant.
        done           -- Finished (uploaded, or matched in a dry run).
        failed         -- An error ended this attempt.

    No state has ``final=True``: a failed attempt can be retried.
    """

    queued = State("queued", initial=True, value="queued")
    resolving = State("resolving", value="resolving")
    clearing = State("clearing", value="clearing")
    staging = State("staging", value="staging")
    transferring = State("transferring", value="transferring")
    registering = State("registering", value="registering")
    awaiting_ready = State("awaiting_ready", value="awaiting_ready")
    attaching = State("attaching", value="attaching")
    linking = State("linking", value="linking")
    done = State("done", value="done")
    failed = State("failed", value="failed")

    resolve = queued.to(resolving)
    clear = resolving.to(clearing)
    stage = clearing.to(staging)
    transfer = staging.to(transferring)
    register_file = transferring.to(registering)
    await_ready = registering.to(awaiting_ready)
    attach = transferring.to(attaching) | registering.to(attaching) | awaiting_ready.to(attaching)
    link = attaching.to(linking)
    finish = resolving.to(done) | attaching.to(done) | linking.to(done)
    fail = (
        queued.to(failed)
        | resolving.to(failed)
        | clearing.to(failed)
        | staging.to(failed)
        | transferring.to(failed)
        | registering.to(failed)
        | awaiting_ready.to(failed)
        | attaching.to(failed)
        | linking.to(failed)
    )
    retry = failed.to(queued)
    reset = done.to(queued)


ACTIVE_STATES: frozenset[str] = frozenset(
    {
        "resolving",
        "clearing",
        "staging",
        "transferring",
        "registering",
        "awaiting_ready",
        "attaching",
        "linking",
    }
)


def create_fsm(current_state: str = "queued") -> FileLifecycleSM:
    """Create an FSM instance at the given state."""
    return FileLifecycleSM(start_value=current_state)
