#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Fault confinement

The error counters are only changed through the four increase/decrease
operations. The error state is derived from them on every access.
'''

# Copyright © 2013 Kevin Thibedeau

# This file is part of Canmac.

# Canmac is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as
# published by the Free Software Foundation, either version 3 of
# the License, or (at your option) any later version.

# Canmac is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Lesser General Public License for more details.

# You should have received a copy of the GNU Lesser General Public
# License along with Canmac. If not, see <http://www.gnu.org/licenses/>.

import logging

from canmac.util.enum import Enum

logger = logging.getLogger(__name__)


PASSIVE_LIMIT = 128
BUS_OFF_LIMIT = 256
REC_MAX = 255
TEC_MAX = 511


class ErrorState(Enum):
    '''Enumeration of fault confinement states'''
    Active = 0
    Passive = 1
    BusOff = 2


def error_state(tec, rec):
    '''Compute the fault confinement state from the error counters

    tec (int)
        Transmit error counter

    rec (int)
        Receive error counter

    Returns an ErrorState value.
    '''
    if tec >= BUS_OFF_LIMIT:
        return ErrorState.BusOff
    elif tec >= PASSIVE_LIMIT or rec >= PASSIVE_LIMIT:
        return ErrorState.Passive
    else:
        return ErrorState.Active


class FaultConfinement(object):
    '''Error counters of one node'''
    def __init__(self, name=''):
        self.name = name
        self.reset()

    def reset(self):
        self._tec = 0
        self._rec = 0

    @property
    def tec(self):
        return self._tec

    @property
    def rec(self):
        return self._rec

    @property
    def error_state(self):
        return error_state(self._tec, self._rec)

    @property
    def bus_off(self):
        return self._tec >= BUS_OFF_LIMIT

    def _update(self, tec, rec):
        prev_state = self.error_state
        self._tec = tec
        self._rec = rec
        new_state = self.error_state

        if new_state != prev_state:
            msg = '%s error state %s -> %s (TEC=%d, REC=%d)'
            args = (self.name, ErrorState(prev_state), ErrorState(new_state), tec, rec)
            if new_state == ErrorState.BusOff:
                logger.warning(msg, *args)
            else:
                logger.info(msg, *args)

    def increase_tec(self, n):
        # Counters are frozen in bus-off until reset
        if self.bus_off:
            return
        self._update(min(self._tec + n, TEC_MAX), self._rec)

    def decrease_tec(self, n):
        if self.bus_off:
            return
        self._update(max(self._tec - n, 0), self._rec)

    def increase_rec(self, n):
        if self.bus_off or self._rec >= PASSIVE_LIMIT:
            return
        self._update(self._tec, min(self._rec + n, REC_MAX))

    def decrease_rec(self, n):
        if self.bus_off:
            return
        if self._rec >= PASSIVE_LIMIT:
            rec = PASSIVE_LIMIT - 1
        else:
            rec = max(self._rec - n, 0)
        self._update(self._tec, rec)
