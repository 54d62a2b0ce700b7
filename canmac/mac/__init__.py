'''CAN medium access control engine'''
