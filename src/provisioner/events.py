"""Event codes attached to every significant log line.

Each log record emitted by the engine carries ``extra={"event": Event.X}``
so that the event log can be filtered by transition.
"""

from __future__ import annotations

from enum import Enum


class Event(str, Enum):
    """Event codes for the provisioning event log."""

    START = "START"
    CONFIG = "CONFIG"
    AUTH_CHECK = "AUTH_CHECK"
    SSH_KEY_REUSE = "SSH_KEY_REUSE"
    SSH_KEY_CREATE = "SSH_KEY_CREATE"
    NET_CREATE = "NET_CREATE"
    NET_REUSE = "NET_REUSE"
    NETWORK_READY = "NETWORK_READY"
    PLACEMENT = "PLACEMENT"
    IMAGE_RESOLVE = "IMAGE_RESOLVE"
    IMAGE = "IMAGE"
    RETRY_CONFIG = "RETRY_CONFIG"
    ACTIVE_CHECK_FAILED = "ACTIVE_CHECK_FAILED"
    ALREADY_ACTIVE = "ALREADY_ACTIVE"
    NAME_GEN_FAILED = "NAME_GEN_FAILED"
    LAUNCH_ATTEMPT = "LAUNCH_ATTEMPT"
    LAUNCH_SUCCESS = "LAUNCH_SUCCESS"
    LAUNCH_RETRYABLE = "LAUNCH_RETRYABLE"
    LAUNCH_FATAL = "LAUNCH_FATAL"
    RETRY_PROFILE = "RETRY_PROFILE"
    RETRY_SLEEP = "RETRY_SLEEP"
    SUCCESS = "SUCCESS"
    REPORT_FAILED = "REPORT_FAILED"
    INTERRUPTED = "INTERRUPTED"
    FATAL = "FATAL"
    SETUP = "SETUP"
    SETUP_DONE = "SETUP_DONE"
