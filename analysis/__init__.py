"""
Analysis package for the Resource Control Simulator.
Contains the event log and end-of-run metrics.
"""
