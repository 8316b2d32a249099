"""Manifest models — the process table the router walks.

Mirrors ``v1/manifest.yaml`` (or an equivalent JSON document)::

    meta: {...}
    runtime:
      engine_contract: {defaults: {...}, derived_rules: [...]}
    router:
      welcome_process: 01_welcome_user
      fallback_process: 21_history_and_disclosures
    modules_catalog: [...]
    process_order: [01_welcome_user, 02_..., ...]
    processes:
      - process_key: 03_premises_building_characteristics
        file: processes/03_premises_building_characteristics.yaml
        ask_if: "ch2_building_selected = true"
        tools:
          - tool: insurance.companyLookup
            payload: {company_number: "$vars.business_registration_id"}

The manifest's declared ordering is authoritative: the router never
permutes it based on runtime state.
"""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from intake_rulesets.constants import TERMINAL_FLOW_SLUG
from intake_rulesets.models.questionnaire import EngineContract, ModuleDef


class ToolInvocation(BaseModel):
    """A tool attached to a process.

    ``payload`` values that are strings starting with ``$vars.`` are
    resolved against the current variable snapshot before execution.
    ``on`` selects when the tool runs: when the process becomes the routing
    target (``enter``) or when it is marked complete (``complete``).

    YAML 1.1 loaders read a bare ``on:`` key as the boolean ``True``; such a
    key is accepted as ``on``.  Any other unknown key is rejected.
    """

    model_config = ConfigDict(extra="forbid")

    tool: str
    payload: dict[str, Any] = Field(default_factory=dict)
    on: Literal["enter", "complete"] = "enter"

    @model_validator(mode="before")
    @classmethod
    def _yaml_boolean_on_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and True in data:
            data = dict(data)
            value = data.pop(True)
            data.setdefault("on", value)
        return data


class ProcessDef(BaseModel):
    """One routable unit of the questionnaire."""

    model_config = ConfigDict(extra="allow")

    process_key: str
    order: Optional[int] = None
    file: Optional[str] = None
    title_he: str = ""
    description_he: Optional[str] = None
    ask_if: Optional[str] = None
    audience: str = "customer"
    tools: List[ToolInvocation] = Field(default_factory=list)


class RouterSettings(BaseModel):
    """Designated entry / fallback processes and the terminal slug."""

    welcome_process: Optional[str] = None
    fallback_process: Optional[str] = None
    terminal_slug: str = TERMINAL_FLOW_SLUG


class RuntimeBlock(BaseModel):
    model_config = ConfigDict(extra="allow")

    engine_contract: EngineContract = Field(default_factory=EngineContract)
    conversation_policies: dict[str, Any] = Field(default_factory=dict)


class Manifest(BaseModel):
    """Top-level manifest document."""

    model_config = ConfigDict(extra="allow")

    meta: dict[str, Any] = Field(default_factory=dict)
    runtime: Optional[RuntimeBlock] = None
    # Older documents carry the contract at top level
    engine_contract: Optional[EngineContract] = None
    router: RouterSettings = Field(default_factory=RouterSettings)
    modules_catalog: List[ModuleDef] = Field(default_factory=list)
    process_order: List[str] = Field(default_factory=list)
    processes: List[ProcessDef] = Field(default_factory=list)

    @property
    def contract(self) -> EngineContract:
        """The effective engine contract (``runtime`` wins over top level)."""
        if self.runtime is not None:
            return self.runtime.engine_contract
        return self.engine_contract or EngineContract()

    def process(self, process_key: str) -> ProcessDef | None:
        for p in self.processes:
            if p.process_key == process_key:
                return p
        return None
