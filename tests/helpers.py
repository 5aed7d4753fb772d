"""
Shared helpers for optbridge tests
"""

import json
import sys
from pathlib import Path

from optbridge.config import Config, TransportConfig

SCRIPTED_SOLVER = Path(__file__).parent / "fixtures" / "scripted_solver.py"


def scripted_config(script, transcript_path, **transport_kwargs) -> Config:
    """Config whose solver command replays ``script`` and logs what it receives"""
    command = [sys.executable, str(SCRIPTED_SOLVER), json.dumps(script), str(transcript_path)]
    return Config(transport=TransportConfig(command=command, **transport_kwargs))


def read_transcript(transcript_path):
    return json.loads(Path(transcript_path).read_text())
