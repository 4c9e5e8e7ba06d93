"""Canonical logging field names shared by Relata components."""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"
EVENT = "event"

# Request correlation fields.
REQUEST_ID = "request_id"
TRACE_ID = "trace_id"
PARENT_ID = "parent_id"
SOURCE = "source"
PRINCIPAL = "principal"

# Operation invocation fields.
COMPONENT_ID = "component_id"
API_NAME = "api_name"
OPERATION_INVOCATION_EVENT = "operation_invocation"
OPERATION_COMPLETION_EVENT = "operation_completion"
SUCCESS = "success"
DURATION_MS = "duration_ms"
ERRORS = "errors"
OUTCOME = "outcome"

# Resource engine fields.
RESOURCE_TYPE = "resource_type"
RESOURCE_ID = "resource_id"
METHOD = "method"
STAGE = "stage"
HOOK = "hook"
RELATIONSHIP = "relationship"
OWNS_TRANSACTION = "owns_transaction"

# Common service-level fields.
SERVICE = "service"
ENVIRONMENT = "environment"
