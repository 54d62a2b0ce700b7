#!/usr/bin/python
# -*- coding: utf-8 -*-

'''CAN bit timing and synchronization

The bit timing logic turns quantum ticks and the raw bus level into one
sample pulse and one transmit pulse per bit time. Edges re-align the bit
time either by a hard synchronization (bus idle) or a bounded
resynchronization.
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

import canmac.config as config
from canmac.util.enum import Enum
from canmac.mac.fields import DOMINANT, RECESSIVE

logger = logging.getLogger(__name__)


class TimingConfigError(ValueError):
    '''Error for bit timing parameters outside of their legal range'''
    pass


class CANTiming(object):
    '''Represent CAN bit timing configuration'''
    def __init__(self, prescaler=1, tseg1=5, tseg2=2, sjw=1):
        '''
        prescaler (int)
            Base clock cycles per time quantum (1-256).

        tseg1 (int)
            Propagation plus phase segment 1 time in quanta (2-16).

        tseg2 (int)
            Phase segment 2 time in quanta (1-8).

        sjw (int)
            Synchronization jump width in quanta (1-4).

        Raises TimingConfigError for out of range values.
        '''
        self.sync = 1
        self.prescaler = _check_range('prescaler', prescaler, 1, 256)
        self.tseg1 = _check_range('tseg1', tseg1, 2, 16)
        self.tseg2 = _check_range('tseg2', tseg2, 1, 8)
        self.sjw = _check_range('sjw', sjw, 1, 4)

    @classmethod
    def from_settings(cls, settings=None):
        '''Build a timing object from the library configuration

        settings (ConfigSettings or None)
            Settings to use. The global canmac.config.settings are used when None.
        '''
        if settings is None:
            settings = config.settings
        return cls(settings.prescaler, settings.tseg1, settings.tseg2, settings.sjw)

    @property
    def total_quanta(self):
        '''Number of quanta in one bit time'''
        return self.sync + self.tseg1 + self.tseg2

    @property
    def bit_steps(self):
        '''Number of base clock cycles in a nominal bit time'''
        return self.total_quanta * self.prescaler

    @property
    def sample_point_steps(self):
        '''The delay in base clock cycles from the start of the bit to the sample point'''
        return (self.sync + self.tseg1) * self.prescaler

    @property
    def sample_point(self):
        '''Sample point as a fraction of the bit time'''
        return (self.sync + self.tseg1) / self.total_quanta

    def __repr__(self):
        return 'CANTiming({}, {}, {}, {})'.format(self.prescaler, self.tseg1, self.tseg2, self.sjw)

    def __eq__(self, other):
        if not isinstance(other, CANTiming): return False
        return (self.prescaler, self.tseg1, self.tseg2, self.sjw) == \
            (other.prescaler, other.tseg1, other.tseg2, other.sjw)

    def __ne__(self, other):
        return not self == other

    __hash__ = None


def _check_range(name, value, low, high):
    if not isinstance(value, int) or not low <= value <= high:
        raise TimingConfigError('{} must be an integer in {}-{}, got {}'.format(name, low, high, value))
    return value


class QuantumGenerator(object):
    '''Programmable divider producing one tick per time quantum'''
    def __init__(self, prescaler=1, phase=0):
        '''
        prescaler (int)
            Base clock cycles per quantum.

        phase (int)
            Initial count. Nodes with different phases have misaligned quanta.
        '''
        self.prescaler = prescaler
        self.phase = phase % prescaler
        self.reset()

    def reset(self):
        self.count = self.phase
        self.tick = False

    def step(self):
        '''Advance one base clock cycle

        Returns True on the cycle that ends a quantum.
        '''
        self.count += 1
        if self.count >= self.prescaler:
            self.count = 0
            self.tick = True
        else:
            self.tick = False

        return self.tick


class Segment(Enum):
    '''Enumeration of bit time segments'''
    Sync = 0
    Phase1 = 1
    Phase2 = 2


class BitTimingEngine(object):
    '''Bit timing logic (BTL)

    Each quantum tick closes the quantum that was in progress. The engine
    evaluates the bus level seen during that quantum, applies any
    synchronization and then moves to the next quantum.

    Outputs are valid for one step after step() returns:

    :ivar sample: Pulse at the end of phase segment 1
    :ivar transmit: Pulse at the end of phase segment 2 (start of the next bit)
    :ivar hard_sync: Pulse when a hard synchronization took place
    :ivar sampled_bit: Bus level captured by the last sample pulse
    :ivar phase_error: Signed phase error of the most recent resynchronization in quanta
    '''
    def __init__(self, timing):
        '''
        timing (CANTiming)
            Segment lengths. Changes take effect at the next bit boundary.
        '''
        self.timing = timing
        self.reset()

    def reset(self):
        self.segment = Segment.Sync
        self.count = 0
        self.seg1 = self.timing.tseg1
        self.seg2 = self.timing.tseg2
        self.phase_error = 0
        self._correction = 0
        self.sync_used = False
        self.prev_level = RECESSIVE
        self.sampled_bit = RECESSIVE

        self.sample = False
        self.transmit = False
        self.hard_sync = False

    def _start_bit(self):
        '''Enter the sync segment of a new bit

        The segment lengths are latched and corrected by a resynchronization
        requested during the previous bit.
        '''
        sjw = self.timing.sjw
        self.seg1 = self.timing.tseg1
        self.seg2 = self.timing.tseg2

        if self._correction > 0:
            self.seg1 += min(self._correction, sjw)
        elif self._correction < 0:
            # Phase segment 2 keeps at least one quantum
            self.seg2 = max(self.seg2 - min(-self._correction, sjw), 1)

        self._correction = 0
        self.sync_used = False

    def _restart_at_edge(self):
        # The quantum carrying the edge becomes the sync segment
        self._correction = 0
        self._start_bit()
        self.sync_used = True
        self.segment = Segment.Phase1
        self.count = 0

    def step(self, tq_tick, bus_level, tx_bit=RECESSIVE, bus_idle=False):
        '''Advance the engine by one base clock cycle

        tq_tick (bool)
            Quantum tick from the QuantumGenerator

        bus_level (int)
            The level currently received from the bus

        tx_bit (int)
            The level this node is driving

        bus_idle (bool)
            The protocol engine reports an idle bus. Edges trigger hard
            synchronization while this is set.

        Returns self for convenient access to the output pulses.
        '''
        self.sample = False
        self.transmit = False
        self.hard_sync = False

        if not tq_tick:
            return self

        edge = self.prev_level == RECESSIVE and bus_level == DOMINANT
        self.prev_level = bus_level

        if edge and bus_idle:
            self.hard_sync = True
            self._restart_at_edge()
            logger.debug('hard sync')
            return self

        if edge and not self.sync_used and self.sampled_bit == RECESSIVE:
            self._resync(tx_bit)

        self._advance(bus_level)
        return self

    def _resync(self, tx_bit):
        '''Measure the phase error of an edge in the quantum just closed

        The correction is held until the next sync segment.
        '''
        if self.segment == Segment.Sync:
            self.phase_error = 0

        elif self.segment == Segment.Phase1:
            if tx_bit == DOMINANT:
                return

            # Late edge
            self.phase_error = self.count + 1

        else: # Phase2
            # Early edge
            self.phase_error = -(self.seg2 - self.count)

        self.sync_used = True
        self._correction = self.phase_error

    def _advance(self, bus_level):
        '''Move to the next quantum'''
        if self.segment == Segment.Sync:
            self.segment = Segment.Phase1
            self.count = 0

        elif self.segment == Segment.Phase1:
            self.count += 1
            if self.count >= self.seg1:
                self.sample = True
                self.sampled_bit = bus_level
                self.segment = Segment.Phase2
                self.count = 0

        else: # Phase2
            self.count += 1
            if self.count >= self.seg2:
                self.transmit = True
                self.segment = Segment.Sync
                self.count = 0
                self._start_bit()
