# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from vm.qemu._fleet import make_qemu_fleet
from vm.qemu._qemu_vm import QemuNic
from vm.qemu._qemu_vm import QemuVm
from vm.qemu._qmp import QmpClient
from vm.qemu._qmp import QmpError

__all__ = [
    'QemuNic',
    'QemuVm',
    'QmpClient',
    'QmpError',
    'make_qemu_fleet',
    ]
