#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Comparison of driven and monitored bus levels
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

from canmac.mac.fields import DOMINANT, RECESSIVE


class BitErrorDetector(object):
    '''Monitor the bus against the bit this node drives

    The raw result is interpreted by the bit stream processor. In the
    arbitration field a recessive bit overwritten by a dominant one is a lost
    arbitration rather than an error.
    '''
    def __init__(self):
        self.reset()

    def reset(self):
        self.mismatch = False
        self.overwritten = False

    def compare(self, driven, sampled):
        '''Record the outcome of one bit time

        driven (int)
            Level driven by this node

        sampled (int)
            Level sampled from the bus

        Returns True on a mismatch.
        '''
        self.mismatch = driven != sampled
        # Recessive driven, dominant seen
        self.overwritten = driven == RECESSIVE and sampled == DOMINANT
        return self.mismatch

    @property
    def suppressed(self):
        '''Dominant driven, recessive seen'''
        return self.mismatch and not self.overwritten
