"""Structured, per-run execution logging."""

import copy
import json
import platform
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel

from ..config import EngineConfig
from ..models.core import (
    ErrorDetail, LogEntry, LogEventType, LogLevel, RunError, RunMetadata,
    RunRecord, RunStatus
)
from .exceptions import LoggerBusyError, NodeExecutionFailedError, format_exception_stack
from .logging import get_logger, log_with_context, to_python_level
from .sinks import RunExportSink

logger = get_logger(__name__)

LogListener = Callable[[LogEntry], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _json_default(value: Any) -> Any:
    """Fallback encoder for values json cannot serialize on its own."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, (set, frozenset)):
        return list(value)
    return str(value)


def _detached(value: Any) -> Any:
    """Deep copy of a payload entering the log, so later mutation cannot reach it."""
    try:
        return copy.deepcopy(value)
    except Exception as e:
        logger.debug(f"Recording {type(value).__name__} by reference, it cannot be copied: {e}")
        return value


def _json_keys(value: Any) -> Any:
    """Stringify mapping keys json cannot encode, recursively."""
    if isinstance(value, Mapping):
        return {
            key if key is None or isinstance(key, (str, int, float, bool)) else str(key): _json_keys(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_json_keys(item) for item in value]
    return value


@dataclass
class _ActiveRun:
    """Mutable state of the run currently open on a logger."""

    workflow_id: str
    workflow_name: str
    execution_id: str
    start_time: datetime
    node_count: int
    inputs: Dict[str, Any]
    metadata: RunMetadata
    successful_nodes: int = 0
    failed_nodes: int = 0
    logs: List[LogEntry] = field(default_factory=list)
    node_outputs: Dict[str, Any] = field(default_factory=dict)

    def snapshot(
        self,
        status: RunStatus,
        end_time: Optional[datetime] = None,
        duration: Optional[float] = None,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[RunError] = None,
    ) -> RunRecord:
        return RunRecord(
            workflow_id=self.workflow_id,
            workflow_name=self.workflow_name,
            execution_id=self.execution_id,
            start_time=self.start_time,
            end_time=end_time,
            duration=duration,
            status=status,
            node_count=self.node_count,
            successful_nodes=self.successful_nodes,
            failed_nodes=self.failed_nodes,
            inputs=_detached(self.inputs),
            outputs=_detached(outputs) if outputs is not None else None,
            node_outputs=_detached(self.node_outputs),
            logs=tuple(self.logs),
            error=error,
            metadata=self.metadata,
        )


class ExecutionLogger:
    """Accumulates the structured log of one run at a time.

    Each executor owns its logger; runs that need to overlap use separate
    logger instances. Listeners are called synchronously, in registration
    order, for every recorded entry and must not call back into the logger's
    mutating methods.
    """

    def __init__(self, config: Optional[EngineConfig] = None, console_echo: Optional[bool] = None):
        """
        Args:
            config: Engine configuration (version and environment go into run metadata)
            console_echo: Override for echoing entries to the python logging stream
        """
        self.config = config or EngineConfig()
        self.console_echo = self.config.console_echo if console_echo is None else console_echo
        self._active: Optional[_ActiveRun] = None
        self._last_run: Optional[RunRecord] = None
        self._listeners: List[LogListener] = []

    @property
    def has_active_run(self) -> bool:
        return self._active is not None

    @property
    def active_execution_id(self) -> Optional[str]:
        return self._active.execution_id if self._active else None

    @property
    def last_run(self) -> Optional[RunRecord]:
        """The most recently completed run, whatever its outcome."""
        return self._last_run

    def start(
        self,
        workflow_id: str,
        workflow_name: str,
        initial_inputs: Optional[Dict[str, Any]] = None,
        node_count: int = 0,
    ) -> str:
        """
        Open a new run.

        Args:
            workflow_id: ID of the workflow being executed
            workflow_name: Name of the workflow being executed
            initial_inputs: Named inputs supplied by the caller
            node_count: Number of nodes in the flow

        Returns:
            Execution ID of the new run

        Raises:
            LoggerBusyError: If a run is already open on this logger
        """
        if self._active is not None:
            raise LoggerBusyError(self._active.execution_id)

        inputs = _detached(dict(initial_inputs or {}))
        started = _now()
        self._active = _ActiveRun(
            workflow_id=workflow_id,
            workflow_name=workflow_name,
            execution_id=f"{int(started.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}",
            start_time=started,
            node_count=node_count,
            inputs=inputs,
            metadata=RunMetadata(
                version=self.config.engine_version,
                environment=self.config.environment.value,
                host=f"{platform.python_implementation()} {platform.python_version()} on {platform.system()}",
            ),
        )

        self.record(
            LogLevel.INFO,
            f"Starting workflow execution: {workflow_name}",
            {"workflowId": workflow_id, "nodeCount": node_count, "inputs": list(inputs.keys())},
            event=LogEventType.WORKFLOW_START,
        )
        return self._active.execution_id

    def record(
        self,
        level: Union[LogLevel, str],
        message: str,
        data: Any = None,
        node_id: Optional[str] = None,
        node_name: Optional[str] = None,
        node_type: Optional[str] = None,
        duration: Optional[float] = None,
        error: Union[ErrorDetail, BaseException, Dict[str, Any], None] = None,
        event: LogEventType = LogEventType.MESSAGE,
    ) -> Optional[LogEntry]:
        """
        Append an entry to the open run and notify listeners.

        Returns:
            The recorded entry, or None when no run is open
        """
        run = self._active
        if run is None:
            logger.debug(f"Dropping log entry outside of a run: {message}")
            return None

        entry = LogEntry(
            id=uuid.uuid4().hex[:12],
            timestamp=_now(),
            level=LogLevel(level),
            event=event,
            message=message,
            node_id=node_id,
            node_name=node_name,
            node_type=node_type,
            duration=duration,
            data=_detached(data),
            error=self._coerce_error(error),
        )
        run.logs.append(entry)

        if event in (LogEventType.NODE_SUCCESS, LogEventType.INPUT_SEEDED):
            run.successful_nodes += 1
        elif event == LogEventType.NODE_ERROR:
            run.failed_nodes += 1

        self._notify_listeners(run, entry)

        if self.console_echo:
            self._echo(run, entry)

        return entry

    def log_input_seeded(self, node_id: str, node_name: str, node_type: str, value: Any) -> Optional[LogEntry]:
        return self.record(
            LogLevel.INFO, f"Input node {node_name}: {value!r}", {"value": value},
            node_id, node_name, node_type, event=LogEventType.INPUT_SEEDED,
        )

    def log_node_start(self, node_id: str, node_name: str, node_type: str, inputs: Any = None) -> Optional[LogEntry]:
        return self.record(
            LogLevel.INFO, f"Executing: {node_name} ({node_type})", inputs,
            node_id, node_name, node_type, event=LogEventType.NODE_START,
        )

    def log_node_success(
        self, node_id: str, node_name: str, node_type: str, outputs: Any, duration: float
    ) -> Optional[LogEntry]:
        return self.record(
            LogLevel.INFO, f"{node_name} completed successfully", outputs,
            node_id, node_name, node_type, duration, event=LogEventType.NODE_SUCCESS,
        )

    def log_node_error(
        self, node_id: str, node_name: str, node_type: str, error: BaseException, duration: float
    ) -> Optional[LogEntry]:
        return self.record(
            LogLevel.ERROR, f"{node_name} failed: {error}", None,
            node_id, node_name, node_type, duration, error, event=LogEventType.NODE_ERROR,
        )

    def set_node_output(self, node_id: str, value: Any) -> None:
        """Record the value a node produced in the open run."""
        if self._active is not None:
            self._active.node_outputs[node_id] = _detached(value)

    def current_run(self) -> Optional[RunRecord]:
        """Snapshot of the open run, if any."""
        if self._active is None:
            return None
        return self._active.snapshot(RunStatus.RUNNING)

    def complete(
        self,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        status: Optional[RunStatus] = None,
    ) -> Optional[RunRecord]:
        """
        Close the open run.

        Args:
            outputs: Collected output node values
            error: The error that ended the run, if it failed
            status: Explicit final status, used for cancellation

        Returns:
            Immutable record of the run, or None when no run is open
        """
        run = self._active
        if run is None:
            return None

        try:
            end_time = _now()
            duration = round((end_time - run.start_time).total_seconds() * 1000, 3)
            run_error = None

            if error is not None:
                final_status = RunStatus.ERROR
                detail = self.error_detail(error)
                failed = error if isinstance(error, NodeExecutionFailedError) else None
                run_error = RunError(
                    message=detail.message,
                    failed_node_id=failed.node_id if failed else None,
                    failed_node_name=failed.node_name if failed else None,
                    stack=detail.stack,
                    code=detail.code,
                )
                self.record(
                    LogLevel.ERROR, f"Workflow execution failed: {detail.message}",
                    error=detail, event=LogEventType.WORKFLOW_ERROR,
                )
            elif status == RunStatus.CANCELLED:
                final_status = RunStatus.CANCELLED
                self.record(
                    LogLevel.WARN, f"Workflow execution cancelled after {duration}ms",
                    event=LogEventType.WORKFLOW_COMPLETE,
                )
            else:
                final_status = RunStatus.SUCCESS
                self.record(
                    LogLevel.INFO, f"Workflow execution completed successfully in {duration}ms",
                    event=LogEventType.WORKFLOW_COMPLETE,
                )

            record = run.snapshot(final_status, end_time, duration, outputs, run_error)
            self._last_run = record
            return record
        finally:
            self._active = None

    def add_listener(self, listener: LogListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: LogListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def export(self, record: RunRecord) -> bytes:
        """Serialize a run record to a self-describing JSON document."""
        return json.dumps(
            _json_keys(record.model_dump()), default=_json_default, indent=2, ensure_ascii=False
        ).encode("utf-8")

    @staticmethod
    def parse(content: Union[bytes, str]) -> RunRecord:
        """Rebuild a run record from an exported document."""
        return RunRecord.model_validate_json(content)

    @staticmethod
    def export_filename(record: RunRecord) -> str:
        stamp = record.start_time.isoformat().replace(":", "-").replace(".", "-")
        name = f"{record.workflow_name}_{record.workflow_id}_{stamp}.json"
        return name.replace("/", "_").replace("\\", "_")

    def persist(self, record: RunRecord, sink: RunExportSink) -> Optional[str]:
        """
        Export a run record and hand it to a sink.

        Sink failures are logged and swallowed so they never replace the
        run's own outcome.

        Returns:
            The location reported by the sink, or None if the write failed
        """
        filename = self.export_filename(record)
        try:
            return sink.write(filename, self.export(record))
        except Exception as e:
            logger.warning(f"Failed to persist run {record.execution_id} to {type(sink).__name__}: {e}")
            return None

    @staticmethod
    def error_detail(error: BaseException) -> ErrorDetail:
        """Build the error detail recorded for an exception."""
        code = getattr(error, "error_code", None) or getattr(error, "code", None)
        return ErrorDetail(
            message=str(error) or type(error).__name__,
            type=type(error).__name__,
            stack=format_exception_stack(error),
            code=str(code) if code is not None else None,
        )

    @staticmethod
    def summary_report(record: RunRecord) -> str:
        """Generate a human-readable summary of a run."""
        duration = f"{record.duration}ms" if record.duration is not None else "Unknown"
        success_rate = (
            f"{record.successful_nodes / record.node_count * 100:.1f}" if record.node_count > 0 else "0"
        )
        rule = "=" * 60

        lines = [
            rule,
            "WORKFLOW EXECUTION SUMMARY",
            rule,
            f"Workflow: {record.workflow_name} ({record.workflow_id})",
            f"Execution: {record.execution_id}",
            f"Status: {record.status.value.upper()}",
            f"Duration: {duration}",
            f"Nodes: {record.successful_nodes}/{record.node_count} successful ({success_rate}%)",
            "",
            "EXECUTION DETAILS:",
            f"- Start Time: {record.start_time.isoformat()}",
            f"- End Time: {record.end_time.isoformat() if record.end_time else 'N/A'}",
            f"- Environment: {record.metadata.environment}",
            "",
            "INPUTS:",
        ]
        if record.inputs:
            lines.extend(
                f"- {key}: {json.dumps(_json_keys(value), default=_json_default)}"
                for key, value in record.inputs.items()
            )
        else:
            lines.append("- No inputs")

        if record.outputs is not None:
            lines.extend(["", "OUTPUTS:"])
            lines.extend(
                f"- {key}: {json.dumps(_json_keys(value), default=_json_default)}"
                for key, value in record.outputs.items()
            )

        if record.error is not None:
            lines.extend(["", "ERROR DETAILS:", f"- Message: {record.error.message}"])
            if record.error.failed_node_name:
                lines.append(f"- Failed Node: {record.error.failed_node_name} ({record.error.failed_node_id})")

        lines.extend([
            "",
            "EXECUTION LOG ENTRIES:",
            f"- Total entries: {len(record.logs)}",
            f"- Errors: {len(record.errors())}",
            f"- Warnings: {len(record.warnings())}",
            rule,
        ])
        return "\n".join(lines)

    def _notify_listeners(self, run: _ActiveRun, entry: LogEntry) -> None:
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as e:
                logger.warning(f"Log listener {listener!r} failed on entry {entry.id}: {e}")
                # Recorded directly so a failing listener is not re-triggered
                run.logs.append(LogEntry(
                    id=uuid.uuid4().hex[:12],
                    timestamp=_now(),
                    level=LogLevel.WARN,
                    event=LogEventType.MESSAGE,
                    message=f"Log listener failed: {e}",
                    error=self.error_detail(e),
                ))

    def _echo(self, run: _ActiveRun, entry: LogEntry) -> None:
        log_with_context(
            logger,
            to_python_level(entry.level),
            f"[{run.workflow_name}] {entry.message}",
            workflow_id=run.workflow_id,
            execution_id=run.execution_id,
            event=entry.event.value,
            node_id=entry.node_id,
            node_name=entry.node_name,
            node_type=entry.node_type,
            duration_ms=entry.duration,
            error=entry.error.message if entry.error else None,
        )

    def _coerce_error(self, error: Union[ErrorDetail, BaseException, Dict[str, Any], None]) -> Optional[ErrorDetail]:
        if error is None or isinstance(error, ErrorDetail):
            return error
        if isinstance(error, BaseException):
            return self.error_detail(error)
        return ErrorDetail(**error)
