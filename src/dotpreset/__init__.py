"""
dotpreset - apply a declarative shell and terminal profile to a machine.

Package structure:
- dotpreset.core: Profiles, the profile runner and run reports
- dotpreset.files: Backup vault and config file writer
- dotpreset.host: Platform detection, package installs, settings store
- dotpreset.integrations: Run journal

Public API:
- load_profile(): Load and validate a profile YAML file
- ProfileRunner: Apply a profile
- RunReport: Outcome of a run
"""

from dotpreset.core.profile import Profile, load_profile
from dotpreset.core.report import RunReport, RunStatus
from dotpreset.core.runner import ProfileRunner

__version__ = "0.1.0"

__all__ = [
    "load_profile",
    "Profile",
    "ProfileRunner",
    "RunReport",
    "RunStatus",
]
