"""Profile model and execution.

- command_line: bashlex parsing of platform action commands
- profile: Step types and the YAML profile loader
- report: Step results and run reports
- runner: Ordered, interruptible profile execution
"""

from dotpreset.core.command_line import parse_command
from dotpreset.core.profile import STEP_KINDS, Profile, Step, find_profile, list_profiles, load_profile, parse_profile
from dotpreset.core.report import Outcome, RunReport, RunStatus, StepResult

__all__ = [
    # Command line
    "parse_command",
    # Profile
    "Profile",
    "Step",
    "STEP_KINDS",
    "find_profile",
    "list_profiles",
    "load_profile",
    "parse_profile",
    # Report
    "Outcome",
    "RunReport",
    "RunStatus",
    "StepResult",
]
