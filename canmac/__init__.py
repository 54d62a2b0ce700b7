#!/usr/bin/python

'''Canmac CAN 2.0A/B medium access control library'''


__version__ = '1.0.0'

import canmac.config
import canmac.util
import canmac.streaming
import canmac.sigproc
import canmac.protocol
import canmac.mac
