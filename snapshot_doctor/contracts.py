"""Shared versioned contracts for snapshot-doctor JSON outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

CONTRACT_VERSIONS = {
    "snapshot_doctor.process_summary": "1.0.0",
    "snapshot_doctor.validation": "1.0.0",
    "snapshot_doctor.comparison": "1.0.0",
    "snapshot_doctor.large_values": "1.0.0",
    "snapshot_doctor.data_correction": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    tool: str,
    command: str,
    input_path: Path,
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": tool,
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input": str(input_path),
        "output": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }


def build_payload(
    contract_name: str,
    body: dict[str, Any],
    *,
    tool_version: str,
    run_summary: dict[str, Any],
) -> dict[str, Any]:
    payload = {
        "contract": build_contract(contract_name),
        "schema_version": CONTRACT_VERSIONS[contract_name],
        "tool_version": tool_version,
        "run_summary": run_summary,
    }
    payload.update(body)
    return payload
