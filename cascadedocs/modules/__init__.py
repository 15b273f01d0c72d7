"""Module grouping: mapping, AI-assisted assignment, narrative updates and reports."""

from .assignment import (
    AssignmentPlan,
    AssignmentResult,
    ModuleAssignmentEngine,
    build_assignment_prompt,
    build_initial_analysis_prompt,
    parse_analysis_response,
    parse_assignment_response,
    plan_assignments,
    plan_initial_partition,
    reconcile_log,
    unique_slug,
)
from .heuristics import suggest_potential_modules
from .mapping import ModuleMappingService
from .reports import format_module_status, generate_module_index, module_status
from .updater import ModuleUpdateEngine, ModuleUpdateResult, extract_module_summary

__all__ = [
    "AssignmentPlan",
    "AssignmentResult",
    "ModuleAssignmentEngine",
    "ModuleMappingService",
    "ModuleUpdateEngine",
    "ModuleUpdateResult",
    "build_assignment_prompt",
    "build_initial_analysis_prompt",
    "extract_module_summary",
    "format_module_status",
    "generate_module_index",
    "module_status",
    "parse_analysis_response",
    "parse_assignment_response",
    "plan_assignments",
    "plan_initial_partition",
    "reconcile_log",
    "suggest_potential_modules",
    "unique_slug",
]
