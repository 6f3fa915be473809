"""
Utilities package for the Resource Control Simulator.
Contains the logger and the scenario loader.
"""
