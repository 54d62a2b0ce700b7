#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Canmac CAN MAC simulator
   test support functions
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

import os
import sys
import unittest
import random

import canmac.protocol.can as can
from canmac.mac.timing import CANTiming
from canmac.mac.controller import CANController
from canmac.mac.fields import TestMode
from canmac.bus import CANBus, CANNode


class RandomSeededTestCase(unittest.TestCase):
    def __init__(self, methodName='runTest', seedVarName='TEST_SEED'):
        unittest.TestCase.__init__(self, methodName=methodName)
        self.seed_var_name = seedVarName
        self.test_name = 'Unnamed test'
        self.trial = 0
        self.trial_count = 0

    def setUp(self):
        # In sub classes use the following to call this setUp() from an overrided setUp()
        # super(<sub-class>, self).setUp()
        
        # Use seed from enviroment if it is set
        try:
            seed = int(os.environ[self.seed_var_name])
        except KeyError:
            random.seed()
            seed = int(random.random() * 1e9)

        print('\n * Random seed: {} *'.format(seed))
        random.seed(seed)

    def update_progress(self, cur_trial, dotted=True):
        self.trial = cur_trial
        if not dotted:
            print('\r  {} {} / {}  '.format(self.test_name, self.trial, self.trial_count), end='')
        else:
            if self.trial == 1:
                print('  {} '.format(self.test_name), end='')
            endc = '' if self.trial % 100 else '\n'
            print('.', end=endc)

        sys.stdout.flush()


# Timing used by the simulation tests: 8 quanta of one step each
TEST_TIMING = CANTiming(prescaler=1, tseg1=5, tseg2=2, sjw=1)


def gen_random_can_frame(ack=True):
    use_extended = random.choice((True, False))
    if use_extended:
        can_id = random.randrange(0, 2**29)
    else:
        can_id = random.randrange(0, 2**11)

    data_count = random.randint(0,8)

    data = [random.randint(0,0xFF) for b in range(data_count)]

    if use_extended:
        cf = can.CANExtendedFrame(can_id, data, ack=ack)
    else:
        cf = can.CANStandardFrame(can_id, data, ack=ack)

    return cf


def make_node(name, timing=TEST_TIMING, test_mode=TestMode.Normal, phase=0):
    return CANNode(CANController(timing, test_mode, name, phase))


def make_bus(count, timing=TEST_TIMING, rx_delays=None, phases=None):
    '''Build a bus with a number of idle nodes

    Returns (bus, list of CANNode).
    '''
    bus = CANBus()
    nodes = []
    for i in range(count):
        delay = rx_delays[i] if rx_delays is not None else 0
        phase = phases[i] if phases is not None else 0
        nodes.append(bus.attach(make_node('n{}'.format(i), timing, phase=phase), rx_delay=delay))

    return bus, nodes


def bus_idle_steps(timing=TEST_TIMING):
    '''Steps needed for a freshly reset node to integrate onto an idle bus'''
    return timing.bit_steps * 12
