'''Protocol frame models'''
