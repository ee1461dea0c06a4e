# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/


class NodeUnreachable(Exception):
    pass


class ServiceNotFoundError(Exception):
    pass


class ServiceStartError(Exception):
    pass
