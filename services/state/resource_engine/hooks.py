"""Ordered, named lifecycle hooks.

Handlers are kept per stage in registration order, adjusted by
``HookOptions.before``/``after``. A handler that returns ``False`` stops the
remaining handlers of that stage; an exception propagates to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from packages.relata_shared.logging import fields as log_fields
from packages.relata_shared.logging import get_logger, log_context
from services.state.resource_engine.context import Method, OperationContext

_LOGGER = get_logger(__name__)

BEFORE_PROCESSING = "beforeProcessing"
BEFORE_SCHEMA_VALIDATE = "beforeSchemaValidate"
AFTER_SCHEMA_VALIDATE = "afterSchemaValidate"
CHECK_PERMISSIONS = "checkPermissions"
BEFORE_DATA = "beforeData"
BEFORE_DATA_CALL = "beforeDataCall"
AFTER_DATA_CALL = "afterDataCall"
CHECK_DATA_PERMISSIONS = "checkDataPermissions"
ENRICH_RECORD = "enrichRecord"
ENRICH_ATTRIBUTES = "enrichAttributes"
FINISH = "finish"
AFTER_COMMIT = "afterCommit"
AFTER_ROLLBACK = "afterRollback"

HookCallback = Callable[[OperationContext], "bool | None"]


def verb_stage(stage: str, method: Method) -> str:
    """Name of the verb-specific variant of ``stage``, e.g. ``beforeDataCallPut``."""
    return f"{stage}{method.suffix}"


@dataclass(frozen=True)
class HookOptions:
    before: str | None = None
    after: str | None = None


@dataclass(frozen=True)
class HookHandler:
    stage: str
    name: str
    callback: HookCallback


class HookPipeline:
    """Dispatch table from stage name to ordered handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[HookHandler]] = {}
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        """Refuse further registrations."""
        self._sealed = True

    def register(
        self,
        stage: str,
        name: str,
        callback: HookCallback,
        *,
        options: HookOptions | None = None,
    ) -> HookHandler:
        if self._sealed:
            raise RuntimeError("hook pipeline is sealed")
        options = options or HookOptions()
        if options.before and options.after:
            raise ValueError("a hook is placed either before or after another, not both")
        handlers = self._handlers.setdefault(stage, [])
        if any(existing.name == name for existing in handlers):
            raise ValueError(f"hook {name} is already registered for {stage}")

        handler = HookHandler(stage=stage, name=name, callback=callback)
        anchor = options.before or options.after
        if anchor is None:
            handlers.append(handler)
            return handler
        position = next((i for i, h in enumerate(handlers) if h.name == anchor), None)
        if position is None:
            raise ValueError(f"hook {anchor} is not registered for {stage}")
        handlers.insert(position if options.before else position + 1, handler)
        return handler

    def handlers(self, stage: str) -> tuple[HookHandler, ...]:
        return tuple(self._handlers.get(stage, ()))

    def run(self, stage: str, context: OperationContext) -> bool:
        """Run every handler of ``stage``; return False when one stopped the chain."""
        for handler in self._handlers.get(stage, ()):
            if handler.callback(context) is False:
                with log_context(
                    {
                        log_fields.STAGE: stage,
                        log_fields.HOOK: handler.name,
                        log_fields.RESOURCE_TYPE: context.resource_type,
                    }
                ):
                    _LOGGER.debug("hook stopped the stage")
                return False
        return True
