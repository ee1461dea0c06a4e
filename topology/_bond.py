# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from typing import Optional

from convergence import CancellationToken
from convergence import PollTimeout
from convergence import Probe
from convergence import poll
from convergence import seconds_left
from network_profiles import BondSpec
from os_access import BondStatus
from os_access import Networking
from topology._exceptions import BondNotReady


def reconcile_bond(networking: Networking, bond: BondSpec):
    """Make the bond exist in the required mode with all members enslaved.

    Images may come up with the bond already created in another mode.
    The mode of a bond with members can't be changed, so such a bond is
    torn down and created anew.
    """
    mode = networking.bond_mode(bond.name)
    if mode is not None and mode != bond.mode:
        _logger.warning(
            "%r: %s is in %s mode, recreate it in %s mode",
            networking, bond.name, mode, bond.mode)
        networking.set_link(bond.name, up=False)
        for member in bond.members:
            networking.set_master(member, None)
        networking.delete_link(bond.name)
        mode = None
    if mode is None:
        networking.create_bond(bond.name, bond.mode, bond.miimon_ms, bond.primary_reselect)
        enslaved = {}
    else:
        enslaved = networking.bond_status(bond.name).slaves
    for member in bond.members:
        if member not in enslaved:
            networking.set_master(member, bond.name)
    networking.set_bond_primary(bond.name, bond.primary)
    for member in bond.members:
        networking.set_link(member, up=True)
    networking.set_link(bond.name, up=True)


def wait_for_bond(
        networking: Networking,
        bond: BondSpec,
        timeout_sec: float,
        poll_interval_sec: float = 1,
        cancellation: Optional[CancellationToken] = None,
        ) -> BondStatus:
    try:
        status = poll(
            Probe(
                f"{bond.name} at {networking!r} is up with an active member",
                lambda: networking.bond_status(bond.name),
                BondStatus.is_ready,
                ),
            interval_sec=poll_interval_sec,
            timeout_sec=timeout_sec,
            cancellation=cancellation,
            )
    except PollTimeout as e:
        raise BondNotReady(str(e)) from e
    if bond.mode not in status.mode:
        raise BondNotReady(f"{bond.name} at {networking!r} reports mode {status.mode!r}, expected {bond.mode}")
    _logger.info("%r: %s is up, active member %s", networking, bond.name, status.active_slave)
    return status


def exercise_bond_failover(
        networking: Networking,
        bond: BondSpec,
        detection_timeout_sec: float,
        poll_interval_sec: float = 0.5,
        cancellation: Optional[CancellationToken] = None,
        deadline: Optional[float] = None,
        ):
    """Take the primary member down and up; the active member must follow.

    With primary_reselect=always the primary becomes active again as soon
    as its link is back. Each switch is waited for the detection window,
    cut short by the deadline if one is given.
    """
    backup = bond.backup()
    _logger.info("%r: take %s down, expect %s to take over", networking, bond.primary, backup)
    networking.set_link(bond.primary, up=False)
    try:
        _wait_active_member(
            networking, bond, backup, _window(detection_timeout_sec, deadline), poll_interval_sec, cancellation)
    finally:
        networking.set_link(bond.primary, up=True)
    _logger.info("%r: %s is back, expect it to take over", networking, bond.primary)
    _wait_active_member(
        networking, bond, bond.primary, _window(detection_timeout_sec, deadline), poll_interval_sec, cancellation)


def _window(detection_timeout_sec: float, deadline: Optional[float]) -> float:
    if deadline is None:
        return detection_timeout_sec
    return min(detection_timeout_sec, seconds_left(deadline))


def _wait_active_member(networking, bond, member, timeout_sec, poll_interval_sec, cancellation):
    try:
        poll(
            Probe(
                f"{member} is the active member of {bond.name} at {networking!r}",
                lambda: networking.bond_status(bond.name).active_slave,
                lambda active: active == member,
                ),
            interval_sec=poll_interval_sec,
            timeout_sec=timeout_sec,
            cancellation=cancellation,
            )
    except PollTimeout as e:
        raise BondNotReady(str(e)) from e


_logger = logging.getLogger(__name__)
