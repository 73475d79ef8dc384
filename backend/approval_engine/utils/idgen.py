"""Prefixed identifiers for engine entities"""
import uuid
from datetime import datetime, timezone
from typing import Optional


def generate_id(prefix: Optional[str] = None) -> str:
    """
    Twelve hex characters of a uuid4, optionally behind "<prefix>-".

        >>> generate_id("REC")
        'REC-3f9c0a1b7d2e'
    """
    token = uuid.uuid4().hex[:12]
    return f"{prefix}-{token}" if prefix else token


def generate_definition_id() -> str:
    return generate_id("DEF")


def generate_definition_version_id() -> str:
    return generate_id("WFV")


def generate_instance_id() -> str:
    return generate_id("INST")


def generate_record_id() -> str:
    return generate_id("REC")


def generate_branch_id() -> str:
    return generate_id("BR")


def generate_delegation_id() -> str:
    return generate_id("DLG")


def generate_notification_id() -> str:
    return generate_id("NTF")


def generate_audit_event_id() -> str:
    return generate_id("AUD")


def generate_correlation_id() -> str:
    """COR-<UTC yyyymmddHHMMSS>-<8 hex>, sortable by issue time"""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"COR-{stamp}-{uuid.uuid4().hex[:8]}"
