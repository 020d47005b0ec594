"""
Core resource abstraction for laemp.

All resources (Package, Service, File, ...) inherit from Resource and
implement the Check/Plan/Apply pattern. On top of it every resource exposes
the uniform verify/ensure pair used by the provisioning stages.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import distro as distro_lib

from laemp.core.errors import DependencyError, DetectionError

if TYPE_CHECKING:
    from laemp.core.context import ExecutionContext


class Action(Enum):
    """Resource actions during apply."""
    NONE = "none"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class State(Enum):
    """Result of a verify: absent, present and correct, or present but wrong."""
    ABSENT = "absent"
    PRESENT = "present"
    DRIFTED = "drifted"


@dataclass
class Change:
    """One property that differs between the host and the desired state."""
    field: str
    from_value: Any
    to_value: Any

    def __str__(self):
        return f"{self.field}: {self.from_value!r} -> {self.to_value!r}"


@dataclass
class Plan:
    """What apply() has to do for one resource, and why."""
    action: Action
    changes: List[Change] = field(default_factory=list)
    reason: str = ""

    def has_changes(self) -> bool:
        return self.action is not Action.NONE

    @property
    def state(self) -> State:
        if self.action is Action.CREATE:
            return State.ABSENT
        elif self.action is Action.NONE:
            return State.PRESENT
        return State.DRIFTED

    def changed_fields(self) -> List[str]:
        return [c.field for c in self.changes]

    def __str__(self):
        if not self.has_changes():
            return "in desired state"
        summary = f"{self.action.value} ({self.reason})" if self.reason else self.action.value
        return "\n".join([summary] + [f"  {change}" for change in self.changes])


@dataclass(frozen=True)
class Distro:
    """Distribution descriptor (id + codename), detected once per run."""
    id: str
    codename: str
    version: str = ""

    @property
    def is_ubuntu(self) -> bool:
        return self.id == "ubuntu"

    @property
    def is_debian(self) -> bool:
        return self.id == "debian"

    @classmethod
    def detect(cls) -> "Distro":
        """
        Detect the local distribution.

        Raises:
            DetectionError: if the distribution cannot be identified
        """
        distro_id = distro_lib.id()
        if not distro_id:
            raise DetectionError("Unable to detect the Linux distribution")

        return cls(
            id=distro_id.lower(),
            codename=distro_lib.codename() or distro_lib.os_release_attr("version_codename"),
            version=distro_lib.version(),
        )


class Resource(ABC):
    """
    One piece of host state laemp manages (a package, a file, a service...).

    Subclasses describe the host with check() and the target with
    desired_state(); plan() diffs the two and apply() carries out the plan.
    Both dicts use an "exists" key plus any properties worth comparing.

    verify() reports a State from a fresh plan; ensure() applies only
    when the plan has changes.
    """

    def __init__(self, name: str, description: Optional[str] = None, **options):
        """
        Args:
            name: Identifier within the resource type ("/etc/nginx/nginx.conf", "nginx")
            description: Operator-facing phrase for what apply does
                ("download Moodle 501"); used for dry-run intents
            **options: Extra settings kept on the instance
        """
        self.name = name
        self.description = description
        self.options = options
        self._desired_state: Dict[str, Any] = {}
        self._actual_state: Dict[str, Any] = {}

    @property
    def id(self) -> str:
        """Key used by reload_on/restart_on, e.g. file:/etc/nginx/nginx.conf."""
        return f"{self.resource_type()}:{self.name}"

    @abstractmethod
    def resource_type(self) -> str:
        pass

    @abstractmethod
    def check(self, ctx: "ExecutionContext") -> Dict[str, Any]:
        """Read the host; must never mutate it."""
        pass

    @abstractmethod
    def desired_state(self) -> Dict[str, Any]:
        pass

    def plan(self, ctx: "ExecutionContext") -> Plan:
        """Diff check() against desired_state()."""
        actual = self._actual_state = self.check(ctx)
        desired = self._desired_state = self.desired_state()

        present = bool(actual.get("exists", False))
        wanted = bool(desired.get("exists", True))

        if wanted and not present:
            fields = [Change(k, None, v) for k, v in desired.items() if k != "exists"]
            return Plan(Action.CREATE, fields, reason="missing")
        if present and not wanted:
            fields = [Change(k, v, None) for k, v in actual.items() if k != "exists"]
            return Plan(Action.DELETE, fields, reason="present but unwanted")
        if not present:
            return Plan(Action.NONE)

        drift = self._detect_changes()
        if drift:
            return Plan(Action.UPDATE, drift, reason="drifted")
        return Plan(Action.NONE)

    def _detect_changes(self) -> List[Change]:
        """Properties whose desired value is set and differs from the host."""
        actual = self._actual_state
        return [
            Change(key, actual.get(key), value)
            for key, value in self._desired_state.items()
            if key != "exists" and value is not None and actual.get(key) != value
        ]

    @abstractmethod
    def apply(self, plan: Plan, ctx: "ExecutionContext") -> None:
        """
        Carry out the plan.

        Raises:
            LaempError: on failure; nothing is rolled back
        """
        pass

    def describe(self, plan: Plan) -> str:
        """Phrase completing 'would ...' for a dry-run intent."""
        if self.description:
            return self.description
        if plan.action == Action.CREATE:
            return f"create {self.id}"
        if plan.action == Action.DELETE:
            return f"remove {self.id}"
        return f"update {self.id} ({', '.join(plan.changed_fields())})"

    def verify(self, ctx: "ExecutionContext", exit_on_failure: bool = False) -> State:
        """
        Report the current state without mutating anything.

        Raises:
            DependencyError: if exit_on_failure is set and the resource is absent
        """
        state = self.plan(ctx).state
        if exit_on_failure and state == State.ABSENT:
            raise DependencyError(f"{self.id} is required but not present")
        return state

    def ensure(self, ctx: "ExecutionContext") -> bool:
        """Apply this resource alone; True when something changed (or would have)."""
        from laemp.core.executor import Executor

        return Executor(ctx).ensure([self]).changed

    def __repr__(self):
        return f"{self.__class__.__name__}(name={self.name!r})"

    def __str__(self):
        return self.id
