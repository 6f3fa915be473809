"""
Scenario Loader for the Resource Control Simulator.

Loads and validates JSON scenario files: simulation settings, the resource
type set with its availability vector, process descriptors and
round-stamped events.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type

import numpy as np

from models.ledger import ResourceLedger
from models.process import PriorityLevel, ProcessDescriptor, ProcessState, SchedulingPolicy
from models.resource import ResourceTypes


EVENT_ACTIONS = ("REQUEST", "RELEASE", "ADD_PROCESS", "REMOVE_PROCESS", "CHANGE_PRIORITY")
SCHEDULING_FIELDS = ("total_need_time", "time_slice", "priority", "policy", "preemptable")


class ScenarioLoadError(Exception):
    """Exception raised when scenario file cannot be loaded or is invalid."""
    pass


@dataclass
class SimulationSettings:
    """Run parameters from the scenario's "simulation" block."""
    total_rounds: int
    time_speed: int = 10
    enable_deadlock_detection: bool = True
    enable_safety_check: bool = True
    queue_levels: int = 5
    starvation_threshold: int = 2000
    detect_interval: int = 1


@dataclass
class Scenario:
    """
    A loaded scenario.

    Attributes:
        settings: Simulation settings
        resource_types: Configured resource types (None if no resources block)
        available: Initial availability vector [R]
        processes: Every declared process, in file order
        events_by_round: Normalized events keyed by round number
        description: Free-text description
        resource_descriptions: Optional per-type descriptions
    """
    settings: SimulationSettings
    resource_types: Optional[ResourceTypes]
    available: Optional[np.ndarray]
    processes: List[ProcessDescriptor] = field(default_factory=list)
    events_by_round: Dict[int, List[Dict[str, Any]]] = field(default_factory=dict)
    description: str = ""
    resource_descriptions: Dict[str, str] = field(default_factory=dict)

    def initial_processes(self) -> List[ProcessDescriptor]:
        """Processes live from round 0 (state other than NEW)."""
        return [p for p in self.processes if p.state != ProcessState.NEW]

    def pending_processes(self) -> List[ProcessDescriptor]:
        """Processes declared NEW, admitted later by an ADD_PROCESS event."""
        return [p for p in self.processes if p.state == ProcessState.NEW]

    def get_process(self, pid: int) -> Optional[ProcessDescriptor]:
        return next((p for p in self.processes if p.pid == pid), None)

    def total_resources(self) -> Optional[np.ndarray]:
        """Available plus the initial allocations of every live process."""
        if self.available is None:
            return None
        total = self.available.copy()
        for process in self.initial_processes():
            if process.ledger is not None:
                total += process.ledger.allocation
        return total


def load_scenario(file_path: str) -> Scenario:
    """
    Load scenario from JSON file.

    Args:
        file_path: Path to scenario JSON file

    Returns:
        Validated Scenario

    Raises:
        ScenarioLoadError: If file cannot be loaded or is invalid
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ScenarioLoadError(f"Scenario file not found: {file_path}")
    except json.JSONDecodeError as e:
        raise ScenarioLoadError(f"Invalid JSON in scenario file: {e}")

    return parse_scenario(data)


def parse_scenario(data: Dict[str, Any]) -> Scenario:
    """
    Validate already-decoded scenario data.

    Raises:
        ScenarioLoadError: If the data is invalid
    """
    if not isinstance(data, dict):
        raise ScenarioLoadError("Scenario must be a JSON object")

    # Validate required fields
    if 'simulation' not in data:
        raise ScenarioLoadError("Scenario missing 'simulation' field")
    if 'processes' not in data:
        raise ScenarioLoadError("Scenario missing 'processes' field")

    settings = _load_settings(data['simulation'])

    resource_types, available, descriptions = None, None, {}
    if 'resources' in data:
        resource_types, available, descriptions = _load_resources(data['resources'])

    if not isinstance(data['processes'], list):
        raise ScenarioLoadError("'processes' must be a list")
    processes = [build_process(proc_data, resource_types) for proc_data in data['processes']]

    pids = [p.pid for p in processes]
    duplicates = sorted({pid for pid in pids if pids.count(pid) > 1})
    if duplicates:
        raise ScenarioLoadError(f"Duplicate process ids: {duplicates}")

    scenario = Scenario(
        settings=settings,
        resource_types=resource_types,
        available=available,
        processes=processes,
        description=data.get('description', ''),
        resource_descriptions=descriptions,
    )

    if resource_types is not None:
        _validate_totals(scenario, data['resources'])

    scenario.events_by_round = _load_events(data.get('events', []), scenario)
    return scenario


def _load_settings(sim_data: Any) -> SimulationSettings:
    if not isinstance(sim_data, dict):
        raise ScenarioLoadError("'simulation' must be an object")
    if 'total_rounds' not in sim_data:
        raise ScenarioLoadError("Simulation missing required field: total_rounds")

    settings = SimulationSettings(
        total_rounds=_int_field(sim_data, 'total_rounds', "simulation", minimum=0),
        time_speed=_int_field(sim_data, 'time_speed', "simulation", default=10, minimum=0),
        enable_deadlock_detection=_bool_field(sim_data, 'enable_deadlock_detection', "simulation", True),
        enable_safety_check=_bool_field(sim_data, 'enable_safety_check', "simulation", True),
        queue_levels=_int_field(sim_data, 'queue_levels', "simulation", default=5, minimum=1),
        starvation_threshold=_int_field(sim_data, 'starvation_threshold', "simulation", default=2000, minimum=0),
        detect_interval=_int_field(sim_data, 'detect_interval', "simulation", default=1, minimum=0),
    )
    return settings


def _load_resources(res_data: Any):
    """
    Load the resource block.

    Returns:
        Tuple of (ResourceTypes, available vector, descriptions)
    """
    if not isinstance(res_data, dict):
        raise ScenarioLoadError("'resources' must be an object")
    for key in ('types', 'available'):
        if key not in res_data:
            raise ScenarioLoadError(f"Resources missing '{key}' field")

    try:
        resource_types = ResourceTypes(res_data['types'])
        available = _resource_vector(resource_types, res_data['available'], "available", require_all=True)
    except (TypeError, ValueError) as e:
        raise ScenarioLoadError(f"Invalid resources block: {e}")

    if np.any(available < 0):
        raise ScenarioLoadError(f"Available resources cannot be negative: {resource_types.format(available)}")

    descriptions = res_data.get('descriptions', {})
    unknown = set(descriptions) - set(resource_types.names)
    if unknown:
        raise ScenarioLoadError(f"Descriptions for unknown resource types: {sorted(unknown)}")
    return resource_types, available, dict(descriptions)


def build_process(proc_data: Any, resource_types: Optional[ResourceTypes]) -> ProcessDescriptor:
    """
    Build a single process from scenario data.

    Args:
        proc_data: Process dictionary from scenario
        resource_types: Configured resource types, needed if the process
            declares a resources block

    Returns:
        ProcessDescriptor with its ledger (if any)

    Raises:
        ScenarioLoadError: If the process data is invalid
    """
    if not isinstance(proc_data, dict):
        raise ScenarioLoadError("Process entry must be an object")

    # Validate required fields
    for required in ('id', 'name', 'scheduling'):
        if required not in proc_data:
            raise ScenarioLoadError(f"Process missing required field: {required}")
    pid = _int_field(proc_data, 'id', "process")
    where = f"Process {pid}"

    sched = proc_data['scheduling']
    if not isinstance(sched, dict):
        raise ScenarioLoadError(f"{where}: 'scheduling' must be an object")
    for required in SCHEDULING_FIELDS:
        if required not in sched:
            raise ScenarioLoadError(f"{where}: scheduling missing required field: {required}")

    priority = _enum_field(PriorityLevel, sched['priority'], f"{where} priority")
    policy = _enum_field(SchedulingPolicy, sched['policy'], f"{where} policy")
    state = _enum_field(ProcessState, proc_data.get('state', 'READY'), f"{where} state")
    if state == ProcessState.TERMINATED:
        raise ScenarioLoadError(f"{where}: cannot start TERMINATED")

    ledger = None
    if 'resources' in proc_data:
        ledger = _load_ledger(proc_data['resources'], resource_types, where)

    try:
        return ProcessDescriptor.create(
            pid=pid,
            name=str(proc_data['name']),
            priority=priority,
            total_need_time=_int_field(sched, 'total_need_time', where, minimum=0),
            time_slice=_int_field(sched, 'time_slice', where, minimum=1),
            preemptable=_bool_field(sched, 'preemptable', where),
            policy=policy,
            queue_level=_int_field(sched, 'queue_level', where, default=0),
            ledger=ledger,
            state=state,
        )
    except ValueError as e:
        raise ScenarioLoadError(f"{where}: {e}")


def _load_ledger(res_data: Any, resource_types: Optional[ResourceTypes], where: str) -> ResourceLedger:
    if resource_types is None:
        raise ScenarioLoadError(f"{where}: declares resources but the scenario has no 'resources' block")
    if not isinstance(res_data, dict) or 'max_demand' not in res_data:
        raise ScenarioLoadError(f"{where}: resources missing 'max_demand'")

    max_demand = res_data['max_demand']
    allocation = res_data.get('allocation', {})
    for label, amounts in (("max_demand", max_demand), ("allocation", allocation)):
        if not isinstance(amounts, dict):
            raise ScenarioLoadError(f"{where}: {label} must map resource types to amounts")
        if any(_not_int(v) or v < 0 for v in amounts.values()):
            raise ScenarioLoadError(f"{where}: {label} amounts must be non-negative integers")

    try:
        return ResourceLedger.from_mappings(resource_types, max_demand, allocation)
    except (KeyError, ValueError) as e:
        raise ScenarioLoadError(f"{where}: {e}")


def _validate_totals(scenario: Scenario, res_data: Dict[str, Any]) -> None:
    """
    Check that the declared total matches available + initial allocations.

    Raises:
        ScenarioLoadError: On mismatch
    """
    if 'total' not in res_data:
        return
    rt = scenario.resource_types
    declared = _resource_vector(rt, res_data['total'], "total", require_all=True)
    derived = scenario.total_resources()
    if not np.array_equal(declared, derived):
        raise ScenarioLoadError(
            f"VALIDATION FAILED: total {rt.format(declared)} does not equal "
            f"available + initial allocations {rt.format(derived)}"
        )


def _load_events(events_data: Any, scenario: Scenario) -> Dict[int, List[Dict[str, Any]]]:
    """
    Validate events and group them by round.

    Normalized event keys: round, action, process_id, resources (vector),
    process (descriptor for inline ADD_PROCESS), priority (PriorityLevel).
    Events keep file order within a round.
    """
    if not isinstance(events_data, list):
        raise ScenarioLoadError("'events' must be a list")

    events_by_round: Dict[int, List[Dict[str, Any]]] = {}
    declared_pids = {p.pid for p in scenario.processes}
    rt = scenario.resource_types

    for index, event in enumerate(events_data):
        where = f"Event {index}"
        if not isinstance(event, dict):
            raise ScenarioLoadError(f"{where}: must be an object")
        if 'round' not in event:
            raise ScenarioLoadError(f"{where}: missing 'round' field")
        if 'action' not in event:
            raise ScenarioLoadError(f"{where}: missing 'action' field")

        round_number = _int_field(event, 'round', where, minimum=1)
        action = str(event['action']).upper()
        if action not in EVENT_ACTIONS:
            raise ScenarioLoadError(f"{where}: unknown action '{event['action']}'")

        normalized: Dict[str, Any] = {'round': round_number, 'action': action}

        if action in ("REQUEST", "RELEASE"):
            if rt is None:
                raise ScenarioLoadError(f"{where}: {action} needs a 'resources' block in the scenario")
            pid = _event_pid(event, where, declared_pids)
            if 'resources' not in event:
                raise ScenarioLoadError(f"{where}: {action} event missing 'resources'")
            amounts = _resource_vector(rt, event['resources'], f"{where} resources")
            if np.any(amounts < 0):
                raise ScenarioLoadError(f"{where}: {action} amounts must be non-negative")
            normalized.update(process_id=pid, resources=amounts)

        elif action == "ADD_PROCESS":
            if 'process' in event:
                process = build_process(event['process'], rt)
                if process.pid in declared_pids:
                    raise ScenarioLoadError(f"{where}: process id {process.pid} already declared")
                declared_pids.add(process.pid)
                normalized.update(process_id=process.pid, process=process)
            else:
                normalized.update(process_id=_event_pid(event, where, declared_pids))

        elif action == "REMOVE_PROCESS":
            normalized.update(process_id=_event_pid(event, where, declared_pids))

        elif action == "CHANGE_PRIORITY":
            pid = _event_pid(event, where, declared_pids)
            if 'priority' not in event:
                raise ScenarioLoadError(f"{where}: CHANGE_PRIORITY event missing 'priority'")
            normalized.update(process_id=pid,
                              priority=_enum_field(PriorityLevel, event['priority'], f"{where} priority"))

        events_by_round.setdefault(round_number, []).append(normalized)

    return events_by_round


def get_scenario_description(file_path: str) -> str:
    """
    Get description from scenario file without full loading.

    Args:
        file_path: Path to scenario JSON file

    Returns:
        Description string, or empty string if the file is unreadable
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        return ''
    return data.get('description', '') if isinstance(data, dict) else ''


# ----------------------------------------------------------------------
# Field helpers
# ----------------------------------------------------------------------

def _not_int(value: Any) -> bool:
    return isinstance(value, bool) or not isinstance(value, int)


def _int_field(data: Dict[str, Any], key: str, where: str,
               default: Optional[int] = None, minimum: Optional[int] = None) -> int:
    if key not in data:
        if default is None:
            raise ScenarioLoadError(f"{where}: missing required field: {key}")
        return default
    value = data[key]
    if _not_int(value):
        raise ScenarioLoadError(f"{where}: '{key}' must be an integer, got {value!r}")
    if minimum is not None and value < minimum:
        raise ScenarioLoadError(f"{where}: '{key}' must be >= {minimum}, got {value}")
    return value


def _bool_field(data: Dict[str, Any], key: str, where: str, default: Optional[bool] = None) -> bool:
    if key not in data:
        if default is None:
            raise ScenarioLoadError(f"{where}: missing required field: {key}")
        return default
    value = data[key]
    if not isinstance(value, bool):
        raise ScenarioLoadError(f"{where}: '{key}' must be true or false, got {value!r}")
    return value


def _enum_field(enum_cls: Type[Enum], value: Any, where: str):
    try:
        return enum_cls[str(value).upper()]
    except KeyError:
        choices = ", ".join(m.name for m in enum_cls)
        raise ScenarioLoadError(f"{where}: unknown value {value!r} (expected one of {choices})")


def _resource_vector(resource_types: ResourceTypes, amounts: Any, where: str,
                     require_all: bool = False) -> np.ndarray:
    if not isinstance(amounts, dict):
        raise ScenarioLoadError(f"{where}: must map resource types to amounts")
    if any(_not_int(v) for v in amounts.values()):
        raise ScenarioLoadError(f"{where}: amounts must be integers")
    try:
        return resource_types.vector(amounts, require_all=require_all)
    except KeyError as e:
        raise ScenarioLoadError(f"{where}: {e.args[0]}")


def _event_pid(event: Dict[str, Any], where: str, declared_pids) -> int:
    pid = _int_field(event, 'process_id', where)
    if pid not in declared_pids:
        raise ScenarioLoadError(f"{where}: unknown process_id {pid}")
    return pid
