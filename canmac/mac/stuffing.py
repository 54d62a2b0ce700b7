#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Bit stuffing for the MAC engine
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

STUFF_RUN = 5


class _RunTracker(object):
    '''Count consecutive identical bits'''
    def __init__(self):
        self.reset()

    def reset(self):
        self.prev_bit = None
        self.count = 0

    def observe(self, bit):
        if bit == self.prev_bit:
            self.count += 1
        else:
            self.prev_bit = bit
            self.count = 1


class BitStuffer(object):
    '''Destuffer and stuff inserter

    The receive tracker follows the sampled bit stream and the transmit tracker
    follows the bits this node drives. Stuff bits count toward the following run
    in both directions.
    '''
    def __init__(self):
        self.rx = _RunTracker()
        self.tx = _RunTracker()
        self.rx_stuff_bit = False
        self.tx_stuff_bit = False

    def reset(self):
        '''Restart both trackers (start of frame)'''
        self.rx.reset()
        self.tx.reset()
        self.rx_stuff_bit = False
        self.tx_stuff_bit = False

    @property
    def rx_expect_stuff(self):
        '''True when the next sampled bit is a stuff bit'''
        return self.rx.count >= STUFF_RUN

    @property
    def tx_need_stuff(self):
        '''True when the next driven bit must be a stuff bit'''
        return self.tx.count >= STUFF_RUN

    def check_rx(self, bit):
        '''Process a sampled bit

        bit (int)
            The sampled bus level

        Returns True on a stuffing violation (sixth identical bit). The
        rx_stuff_bit attribute reports whether the bit was a stuff bit.
        '''
        self.rx_stuff_bit = self.rx_expect_stuff
        violation = self.rx_stuff_bit and bit == self.rx.prev_bit
        self.rx.observe(bit)
        return violation

    def next_tx(self, data_bit):
        '''Select the next bit to drive

        data_bit (int)
            The frame content bit that is due

        Returns the stuff bit when one is needed, otherwise data_bit. The
        tx_stuff_bit attribute reports which one was chosen.
        '''
        self.tx_stuff_bit = self.tx_need_stuff
        bit = 1 - self.tx.prev_bit if self.tx_stuff_bit else data_bit
        self.tx.observe(bit)
        return bit
