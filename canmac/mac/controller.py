#!/usr/bin/python
# -*- coding: utf-8 -*-

'''CAN controller

   One CAN node: quantum prescaler, bit timing logic, bit stream processor
   and fault confinement wired together and advanced one base clock cycle
   per step.
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
from canmac.mac.fields import RECESSIVE, TestMode
from canmac.mac.timing import CANTiming, QuantumGenerator, BitTimingEngine
from canmac.mac.fault import FaultConfinement
from canmac.mac.bsp import BitStreamProcessor

logger = logging.getLogger(__name__)


class CANController(object):
    '''A single CAN node

    The controller is clocked by calling step() with the level currently
    received from the bus. Within a step the bit timing logic only sees the
    outputs the stream processor committed in the previous step.

    To send a frame set tx_frame and tx_valid. Keep both unchanged until the
    tx_ready pulse. Received frames are presented on rx_frame for the single
    step where rx_valid is True.
    '''
    def __init__(self, timing=None, test_mode=None, name='', phase=0):
        '''
        timing (CANTiming or None)
            Bit timing parameters. Built from canmac.config.settings when None.

        test_mode (TestMode or None)
            Operating mode. Taken from canmac.config.settings when None.

        name (string)
            Name used in log messages.

        phase (int)
            Initial offset of the quantum prescaler.
        '''
        if timing is None:
            timing = CANTiming.from_settings()
        if test_mode is None:
            test_mode = TestMode.from_name(config.settings.test_mode)

        self.timing = timing
        self.test_mode = test_mode
        self.name = name

        self.prescaler = QuantumGenerator(timing.prescaler, phase)
        self.btl = BitTimingEngine(timing)
        self.fault = FaultConfinement(name)
        self.bsp = BitStreamProcessor(self.fault, test_mode, name)

        self.tx_frame = None
        self.tx_valid = False
        self.tx_line = RECESSIVE
        self.steps = 0

    def reset(self):
        '''Return every component to its initial state'''
        self.prescaler.reset()
        self.btl.reset()
        self.fault.reset()
        self.bsp.reset()
        self.tx_line = RECESSIVE
        self.steps = 0
        logger.info('%s: reset', self.name)

    def step(self, bus_level):
        '''Advance one base clock cycle

        bus_level (int)
            Level received from the bus (0 dominant, 1 recessive)

        Returns the level this node drives onto the bus for the next step.
        '''
        bsp = self.bsp

        if self.test_mode == TestMode.Loopback:
            # The bus is ignored and our own transmit level is received instead
            rx = bsp.tx_bit
        else:
            rx = bus_level

        tick = self.prescaler.step()
        btl = self.btl.step(tick, rx, bsp.tx_bit, bsp.bus_idle)
        bsp.step(btl.sample, btl.transmit, btl.sampled_bit, btl.hard_sync, \
            self.tx_frame, self.tx_valid)

        if self.fault.bus_off or self.test_mode != TestMode.Normal:
            self.tx_line = RECESSIVE
        else:
            self.tx_line = bsp.tx_bit

        self.steps += 1
        return self.tx_line

    @property
    def tx_ready(self):
        return self.bsp.tx_ready

    @property
    def rx_valid(self):
        return self.bsp.rx_valid

    @property
    def rx_frame(self):
        return self.bsp.rx_frame

    @property
    def events(self):
        return self.bsp.events

    @property
    def frame_start(self):
        return self.bsp.frame_start

    @property
    def field(self):
        return self.bsp.field

    @property
    def error_state(self):
        return self.fault.error_state

    @property
    def tec(self):
        return self.fault.tec

    @property
    def rec(self):
        return self.fault.rec

    def status(self):
        '''Return a dict of the status registers'''
        return {
            'error_state': self.fault.error_state,
            'tec': self.fault.tec,
            'rec': self.fault.rec,
            'field': self.bsp.field
        }
