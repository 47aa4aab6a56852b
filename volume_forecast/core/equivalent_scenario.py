# volume_forecast/core/equivalent_scenario.py
"""Rules for finding the scenario that plays the same planning role in
another fiscal year.

Each rule takes the current scenario, the candidate scenarios already
restricted to the requested fiscal year, and the full scenario index, and
returns a match or None. ``find_equivalent_scenario`` tries them in order.
"""
import re
from typing import Callable, Dict, Iterable, List, Optional

from ..models import ScenarioStatus

_FY_TOKEN = re.compile(r'[-_]?\s*FY\s*\d{2,4}\s*', re.IGNORECASE)
_YEAR_TOKEN = re.compile(r'\b\d{4}\b')
_EDGE_SEPARATORS = re.compile(r'^[\s\-_/|.:]+|[\s\-_/|.:]+$')
_WHITESPACE = re.compile(r'\s+')

def normalize_scenario_name(name: str) -> str:
    """Reduce a scenario name to its family name.

    ``"Budget FY2025"``, ``"budget - 2024"`` and ``"FY24 Budget"`` all
    normalize to ``"budget"``.
    """
    if not name:
        return ''
    family = _FY_TOKEN.sub(' ', name)
    family = _YEAR_TOKEN.sub(' ', family)
    family = _WHITESPACE.sub(' ', family)
    family = _EDGE_SEPARATORS.sub('', family)
    return family.strip().lower()

def lineage_root_id(scenario, scenarios_by_id: Dict) -> int:
    """Follow ``source_scenario_id`` links up to the oldest ancestor."""
    current = scenario
    seen = {current.id}
    while current.source_scenario_id is not None:
        parent = scenarios_by_id.get(current.source_scenario_id)
        if parent is None or parent.id in seen:
            break
        seen.add(parent.id)
        current = parent
    return current.id

def match_by_lineage(scenario, candidates: List, scenarios_by_id: Dict):
    """The scenario this one was cloned from, if it belongs to the year."""
    if scenario.source_scenario_id is None:
        return None
    for candidate in candidates:
        if candidate.id == scenario.source_scenario_id:
            return candidate
    return None

def match_by_sibling(scenario, candidates: List, scenarios_by_id: Dict):
    """Any scenario of the year descending from the same lineage root."""
    if scenario.source_scenario_id is None:
        return None
    root_id = lineage_root_id(scenario, scenarios_by_id)
    for candidate in candidates:
        if lineage_root_id(candidate, scenarios_by_id) == root_id:
            return candidate
    return None

def match_by_family_name(scenario, candidates: List, scenarios_by_id: Dict):
    """A scenario of the year whose name normalizes to the same family."""
    family = normalize_scenario_name(scenario.name)
    if not family:
        return None
    matches = [c for c in candidates if normalize_scenario_name(c.name) == family]
    return _prefer_locked(matches)

def match_any_in_year(scenario, candidates: List, scenarios_by_id: Dict):
    """Last resort: any scenario of the year, LOCKED first."""
    return _prefer_locked(candidates)

def _prefer_locked(candidates: List):
    for candidate in candidates:
        if candidate.status == ScenarioStatus.LOCKED:
            return candidate
    return candidates[0] if candidates else None

EQUIVALENCE_RULES: List[Callable] = [
    match_by_lineage,
    match_by_sibling,
    match_by_family_name,
    match_any_in_year,
]

def find_equivalent_scenario(scenario, scenarios: Iterable, fiscal_year: int):
    """Find the scenario representing ``scenario``'s planning family in a year.

    Args:
        scenario: Scenario being forecast
        scenarios: All known scenarios
        fiscal_year: Fiscal year the equivalent must belong to

    Returns:
        Matching scenario, or None if no scenario exists for the year
    """
    all_scenarios = sorted(scenarios, key=lambda s: s.id)
    scenarios_by_id = {s.id: s for s in all_scenarios}
    candidates = [
        s for s in all_scenarios
        if s.id != scenario.id and s.fiscal_year == fiscal_year
    ]
    if not candidates:
        return None

    for rule in EQUIVALENCE_RULES:
        match = rule(scenario, candidates, scenarios_by_id)
        if match is not None:
            return match
    return None
