# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from convergence._cancellation import CancellationToken
from convergence._cancellation import Cancelled
from convergence._poller import PollTimeout
from convergence._poller import Probe
from convergence._poller import ProbeError
from convergence._poller import poll
from convergence._poller import seconds_left

__all__ = [
    'CancellationToken',
    'Cancelled',
    'PollTimeout',
    'Probe',
    'ProbeError',
    'poll',
    'seconds_left',
    ]
