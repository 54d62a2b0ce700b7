#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Bit-serial CRC-15 accumulator
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

from canmac.protocol.can import CRC_POLY
from canmac.util.bitops import bit_at

CRC_MASK = 0x7FFF


class CRCEngine(object):
    '''Running CAN CRC-15

    Equivalent to canmac.protocol.can.can_crc15() applied one bit at a time.
    '''
    def __init__(self):
        self.reset()

    def reset(self):
        self.sreg = 0
        self.enabled = True

    def update(self, bit):
        '''Shift one unstuffed bit through the register. Ignored while frozen.'''
        if not self.enabled:
            return

        leftbit = (self.sreg & 0x4000) >> 14
        self.sreg = (self.sreg << 1) & CRC_MASK
        if bit != leftbit:
            self.sreg ^= CRC_POLY

    def freeze(self):
        '''Stop accumulating (start of the CRC sequence)'''
        self.enabled = False

    @property
    def crc(self):
        return self.sreg

    def crc_bit(self, index):
        '''Bit of the CRC sequence at position index (MSB first)'''
        return bit_at(self.sreg, index, 15)
