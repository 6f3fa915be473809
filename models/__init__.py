"""
Models package for the Resource Control Simulator.
Contains process descriptors, scheduling info, resource ledgers and state snapshots.
"""
