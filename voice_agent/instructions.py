"""
System prompt and greeting per scenario.

Scenario selection:
- flow parameter (from job metadata)
- AGENT_SCENARIO environment variable
- "default"

Scenarios are YAML files in voice_agent/scenarios/, read with PyYAML's
safe_load (which also accepts plain JSON).
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


AGENT_INSTRUCTIONS = (
    "You are a voice assistant created by LiveKit. Your interface with users will be voice. "
    "You should use short and concise responses, and avoiding usage of unpronounceable "
    "punctuation."
)

GREETING_TEXT = "Hey, how can I help you today"


def _get_scenarios_dir() -> Path:
    return Path(__file__).parent / "scenarios"


def _load_file(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Scenario file {path} must contain a mapping at top-level")
    return data


def load_scenario(scenario_name: str) -> Dict[str, Any]:
    """
    Load a scenario by name.

    Resolution order:
    1) <name>.yaml / <name>.yml / <name>.json
    2) default.yaml / default.yml / default.json
    3) built-in default
    """
    scenarios_dir = _get_scenarios_dir()
    for name in (scenario_name, "default"):
        for suffix in (".yaml", ".yml", ".json"):
            candidate = scenarios_dir / f"{name}{suffix}"
            if candidate.exists():
                return _load_file(candidate)

    return {
        "name": "default",
        "prompt": AGENT_INSTRUCTIONS,
        "greeting_text": GREETING_TEXT,
    }


def get_scenario(flow: Optional[str] = None) -> Dict[str, Any]:
    scenario_name = flow or os.getenv("AGENT_SCENARIO", "default")
    return load_scenario(scenario_name)


def get_instructions(flow: Optional[str] = None) -> str:
    """System prompt for the scenario."""
    scenario = get_scenario(flow)
    return str(scenario.get("prompt") or AGENT_INSTRUCTIONS).strip()


def get_greeting_text(flow: Optional[str] = None) -> str:
    """Fixed opening line spoken when the participant joins."""
    scenario = get_scenario(flow)
    return str(scenario.get("greeting_text") or GREETING_TEXT).strip()
