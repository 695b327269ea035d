"""Core client logic, independent of any embedding application.

Module Structure:
    - backchannel/ : Identity server backchannel API client
"""
