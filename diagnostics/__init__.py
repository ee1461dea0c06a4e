# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from diagnostics._collector import DiagnosticBundle
from diagnostics._collector import DiagnosticsCollector
from diagnostics._collector import NodeDiagnostics
from diagnostics._report import write_report

__all__ = [
    'DiagnosticBundle',
    'DiagnosticsCollector',
    'NodeDiagnostics',
    'write_report',
    ]
