'''Utility modules'''
