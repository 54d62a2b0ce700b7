'''Canmac test suite'''
