# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/


class CapabilityMissing(Exception):

    def __init__(self, node_name: str, capability: str):
        super().__init__(f"{node_name}: {capability} is neither loadable nor loaded")
        self.node_name = node_name
        self.capability = capability


class AddressMismatch(Exception):
    pass


class BondNotReady(Exception):
    pass
