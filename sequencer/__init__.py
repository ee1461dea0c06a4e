# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from sequencer._phases import ExitCode
from sequencer._phases import Phase
from sequencer._phases import PhaseFailed
from sequencer._phases import PhaseName
from sequencer._phases import RunResult
from sequencer._sequencer import PhaseSequencer
from sequencer._sequencer import exit_code_for

__all__ = [
    'ExitCode',
    'Phase',
    'PhaseFailed',
    'PhaseName',
    'PhaseSequencer',
    'RunResult',
    'exit_code_for',
    ]
